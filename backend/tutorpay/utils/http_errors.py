from __future__ import annotations

from flask import current_app, jsonify

from tutorpay.errors import EscrowError, GatewayError, LedgerInvariantError


def register_error_handlers(app) -> None:
    @app.errorhandler(EscrowError)
    def _escrow_error(err: EscrowError):
        body = err.to_dict()
        if isinstance(err, GatewayError):
            body["retryable"] = bool(err.retryable)
        if isinstance(err, LedgerInvariantError):
            current_app.logger.critical("Ledger invariant violated: %s", err)
        elif err.status_code >= 500:
            current_app.logger.error("%s: %s", err.code, err)
        return jsonify(body), err.status_code

    @app.errorhandler(404)
    def _not_found(_err):
        return jsonify({"status": "failed", "code": "NOT_FOUND", "message": "Not found"}), 404

    @app.errorhandler(405)
    def _method_not_allowed(_err):
        return jsonify({"status": "failed", "code": "METHOD_NOT_ALLOWED", "message": "Method not allowed"}), 405
