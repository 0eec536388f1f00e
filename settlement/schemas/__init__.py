"""Schema package exports."""
from .dispute import DisputeCreate, DisputeRead, DisputeResolve
from .escrow import EscrowProgressRead, EscrowRead
from .event import DomainEventRead
from .milestone import ConfirmationCreate, MilestoneRead, MilestoneSpec
from .transaction import FeeBreakdown, RoutingPreview, TransactionCreate, TransactionRead
from .transfer import DirectTransferRead, TransferCancel
from .user import UserCreate, UserRead
from .wallet import BalanceRead, WalletCreate, WalletRead

__all__ = [
    "DisputeCreate",
    "DisputeRead",
    "DisputeResolve",
    "EscrowProgressRead",
    "EscrowRead",
    "DomainEventRead",
    "ConfirmationCreate",
    "MilestoneRead",
    "MilestoneSpec",
    "FeeBreakdown",
    "RoutingPreview",
    "TransactionCreate",
    "TransactionRead",
    "DirectTransferRead",
    "TransferCancel",
    "UserCreate",
    "UserRead",
    "BalanceRead",
    "WalletCreate",
    "WalletRead",
]
