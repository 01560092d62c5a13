from .contracts import (
    ExecutionGateway,
    ExecutionMapping,
    ExecutionProfile,
    ProfitFeeDistributor,
    ProfitFeeRequest,
    ProfitFeeScope,
    ReferralBonusPort,
)
from .distributor import (
    HttpProfitFeeDistributor,
    LoggingProfitFeeDistributor,
    build_profit_fee_distributor,
    urllib_transport,
)
from .errors import XcaError, make_xca_error
from .referral import NoReferralBonus
from .retry import execute_with_retry
from .sqlite_gateway import SqliteExecutionGateway

__all__ = [
    "ExecutionGateway",
    "ExecutionMapping",
    "ExecutionProfile",
    "ProfitFeeDistributor",
    "ProfitFeeRequest",
    "ProfitFeeScope",
    "ReferralBonusPort",
    "HttpProfitFeeDistributor",
    "LoggingProfitFeeDistributor",
    "NoReferralBonus",
    "SqliteExecutionGateway",
    "XcaError",
    "build_profit_fee_distributor",
    "execute_with_retry",
    "make_xca_error",
    "urllib_transport",
]
