from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class MwErrorPayload:
    code: str
    message: str
    status: int
    retryable: bool = False
    source: str = "MW"
    details: dict[str, Any] | None = None


class MwError(RuntimeError):
    def __init__(self, payload: MwErrorPayload) -> None:
        super().__init__(f"{payload.code}: {payload.message}")
        self.payload = payload

    @property
    def code(self) -> str:
        return self.payload.code

    @property
    def status(self) -> int:
        return self.payload.status

    @property
    def details(self) -> dict[str, Any]:
        return dict(self.payload.details or {})


def make_mw_error(
    code: str,
    message: str,
    status: int,
    details: dict[str, Any] | None = None,
    *,
    source: str = "MW",
) -> MwError:
    return MwError(MwErrorPayload(code=code, message=message, status=status, source=source, details=details))
