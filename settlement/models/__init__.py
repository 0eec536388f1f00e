"""ORM models package."""
from .alert import Alert
from .audit import AuditLog
from .base import Base
from .direct_transfer import DirectTransfer, TransferStatus
from .dispute import Dispute, DisputeOutcome, DisputeStatus
from .escrow import Escrow, EscrowStatus
from .event import DomainEvent
from .milestone import Milestone, MilestoneStatus
from .transaction import PathKind, Transaction
from .user import Tier, UserAccount
from .wallet import EntryDirection, LedgerEntry, Wallet

__all__ = [
    "Alert",
    "AuditLog",
    "Base",
    "DirectTransfer",
    "TransferStatus",
    "Dispute",
    "DisputeOutcome",
    "DisputeStatus",
    "DomainEvent",
    "Escrow",
    "EscrowStatus",
    "EntryDirection",
    "LedgerEntry",
    "Milestone",
    "MilestoneStatus",
    "PathKind",
    "Tier",
    "Transaction",
    "UserAccount",
    "Wallet",
]
