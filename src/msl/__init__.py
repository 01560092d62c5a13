from .errors import MslError, SubscriptionTransitionError, make_msl_error
from .models import (
    CreateSubscriptionResult,
    ProfitFeeOutcome,
    SettlementOptions,
    SettlementOutcome,
    SettlementRunItem,
    SettlementRunReport,
    WithdrawOutcome,
)
from .profit_fee import ProfitFeeSettler, build_trade_id
from .service import SubscriptionService
from .state_machine import ALLOWED_TRANSITIONS, transition_subscription_status
from .trial import resolve_subscription_trial

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CreateSubscriptionResult",
    "MslError",
    "ProfitFeeOutcome",
    "ProfitFeeSettler",
    "SettlementOptions",
    "SettlementOutcome",
    "SettlementRunItem",
    "SettlementRunReport",
    "SubscriptionService",
    "SubscriptionTransitionError",
    "WithdrawOutcome",
    "build_trade_id",
    "make_msl_error",
    "resolve_subscription_trial",
    "transition_subscription_status",
]
