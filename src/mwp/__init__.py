from .bootstrap import get_connection, initialize_database, run_migrations
from .models import (
    GUARANTEE_LIABILITY_STATUSES,
    RESERVATION_ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ManagedProduct,
    ManagedSettlement,
    ManagedSubscription,
    ManagedTerm,
    NavSnapshot,
    PrincipalReservationEntry,
    ReserveFundEntry,
    RiskEvent,
    SettlementExecution,
)
from .repository import MwpRepository

__all__ = [
    "GUARANTEE_LIABILITY_STATUSES",
    "RESERVATION_ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "get_connection",
    "initialize_database",
    "run_migrations",
    "MwpRepository",
    "ManagedProduct",
    "ManagedTerm",
    "ManagedSubscription",
    "NavSnapshot",
    "ManagedSettlement",
    "ReserveFundEntry",
    "PrincipalReservationEntry",
    "RiskEvent",
    "SettlementExecution",
]
