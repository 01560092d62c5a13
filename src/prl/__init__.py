from .errors import PrincipalAvailabilityError
from .models import PrincipalAvailability
from .service import PrincipalReservationLedger, release_key, reserve_key

__all__ = [
    "PrincipalAvailability",
    "PrincipalAvailabilityError",
    "PrincipalReservationLedger",
    "release_key",
    "reserve_key",
]
