from __future__ import annotations

from typing import Any

from mwc.errors import MwError, MwErrorPayload


class SubscriptionTransitionError(ValueError):
    def __init__(self, subscription_id: str, current: str, requested: str) -> None:
        super().__init__(f"invalid transition: {current} -> {requested} (subscription={subscription_id})")
        self.subscription_id = subscription_id
        self.current = current
        self.requested = requested


class MslError(MwError):
    pass


def make_msl_error(code: str, message: str, status: int, details: dict[str, Any] | None = None) -> MslError:
    return MslError(MwErrorPayload(code=code, message=message, status=status, source="MSL", details=details))
