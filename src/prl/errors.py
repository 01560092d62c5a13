from __future__ import annotations

from decimal import Decimal

from mwc.errors import MwError, MwErrorPayload

from .models import PrincipalAvailability


class PrincipalAvailabilityError(MwError):
    def __init__(self, requested_principal: Decimal, availability: PrincipalAvailability) -> None:
        deficit = max(Decimal("0"), requested_principal - availability.available_balance)
        super().__init__(
            MwErrorPayload(
                code="MANAGED_PRINCIPAL_RESERVATION_INSUFFICIENT",
                message="Managed principal reservation balance is insufficient",
                status=409,
                details={
                    "requestedPrincipal": format(requested_principal, "f"),
                    "deficit": format(deficit, "f"),
                    **availability.to_dict(),
                },
            )
        )
        self.requested_principal = requested_principal
        self.availability = availability
        self.deficit = deficit
