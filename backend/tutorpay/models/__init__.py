from .user import User  # noqa: F401
from .wallet import Wallet  # noqa: F401
from .ledger_entry import LedgerEntry  # noqa: F401
from .escrow_record import EscrowRecord  # noqa: F401
from .payment_intent import PaymentIntent  # noqa: F401
from .platform_settings import PlatformSettings  # noqa: F401
from .withdrawal import WithdrawalRequest  # noqa: F401

from .audit_log import AuditLog  # noqa: F401

from .idempotency_key import IdempotencyKey  # noqa: F401
