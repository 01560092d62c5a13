from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from mwc.money import EPS, ZERO, q_amount, utc_now
from mwp.models import RESERVATION_ACTIVE_STATUSES, PrincipalReservationEntry
from mwp.repository import MwpRepository

from .errors import PrincipalAvailabilityError
from .models import PrincipalAvailability, ReleaseStatus

logger = logging.getLogger("managedwealth.prl")

RESERVE_NOTE = "MANAGED_SUBSCRIPTION_CREATED"
RELEASE_NOTE = "MANAGED_SUBSCRIPTION_SETTLED"


def reserve_key(subscription_id: str) -> str:
    return f"managed-reservation:reserve:{subscription_id}"


def release_key(subscription_id: str) -> str:
    return f"managed-reservation:release:{subscription_id}"


class PrincipalReservationLedger:
    """Wallet-level principal reservations backed by an append-only ledger.

    The reserved balance is the larger of the ledger view (reserves minus
    releases) and the sum of principal over active subscriptions, so a write
    missing from either source can never inflate what the wallet may spend.
    """

    def __init__(self, repository: MwpRepository) -> None:
        self.repository = repository

    def get_availability(self, wallet_address: str) -> PrincipalAvailability:
        wallet = wallet_address.lower()
        deposits, withdrawals = self.repository.sum_net_deposits(wallet)
        reserved, released = self.repository.sum_reservation_entries(wallet)
        from_active = self.repository.sum_principal_by_status(wallet, RESERVATION_ACTIVE_STATUSES)

        qualified = q_amount(deposits - withdrawals)
        from_ledger = q_amount(reserved - released)
        reserved_balance = max(ZERO, q_amount(max(from_ledger, from_active)))
        return PrincipalAvailability(
            managed_qualified_balance=qualified,
            reserved_balance=reserved_balance,
            reserved_from_ledger=from_ledger,
            reserved_from_active_subscriptions=q_amount(from_active),
            available_balance=q_amount(qualified - reserved_balance),
        )

    def assert_availability(self, wallet_address: str, requested_principal: Decimal) -> PrincipalAvailability:
        availability = self.get_availability(wallet_address)
        if availability.available_balance + EPS < requested_principal:
            logger.info(
                "principal reservation insufficient wallet=%s requested=%s available=%s",
                wallet_address.lower(),
                requested_principal,
                availability.available_balance,
            )
            raise PrincipalAvailabilityError(requested_principal, availability)
        return availability

    def reserve(
        self,
        *,
        wallet_address: str,
        subscription_id: str,
        amount: Decimal,
        snapshot: PrincipalAvailability,
        note: str | None = None,
        now: datetime | None = None,
    ) -> PrincipalReservationEntry:
        amount = q_amount(amount)
        next_reserved = q_amount(snapshot.reserved_balance + amount)
        entry = PrincipalReservationEntry(
            id=f"prl-{uuid4().hex}",
            wallet_address=wallet_address.lower(),
            subscription_id=subscription_id,
            entry_type="RESERVE",
            amount=amount,
            idempotency_key=reserve_key(subscription_id),
            managed_qualified_balance=snapshot.managed_qualified_balance,
            reserved_balance_after=next_reserved,
            available_balance_after=q_amount(snapshot.managed_qualified_balance - next_reserved),
            note=note or RESERVE_NOTE,
            created_at=now or utc_now(),
        )
        self.repository.upsert_reservation_entry(entry)
        return entry

    def release(
        self,
        *,
        wallet_address: str,
        subscription_id: str,
        amount: Decimal,
        note: str | None = None,
        now: datetime | None = None,
    ) -> ReleaseStatus:
        if not self.repository.has_reservation_entry(subscription_id=subscription_id, entry_type="RESERVE"):
            return "SKIPPED_NO_RESERVE"
        if self.repository.has_idempotency_key(release_key(subscription_id)):
            return "SKIPPED_ALREADY_RELEASED"

        availability = self.get_availability(wallet_address)
        release_amount = q_amount(min(amount, availability.reserved_balance))
        next_reserved = q_amount(max(ZERO, availability.reserved_balance - release_amount))
        entry = PrincipalReservationEntry(
            id=f"prl-{uuid4().hex}",
            wallet_address=wallet_address.lower(),
            subscription_id=subscription_id,
            entry_type="RELEASE",
            amount=release_amount,
            idempotency_key=release_key(subscription_id),
            managed_qualified_balance=availability.managed_qualified_balance,
            reserved_balance_after=next_reserved,
            available_balance_after=q_amount(availability.managed_qualified_balance - next_reserved),
            note=note or RELEASE_NOTE,
            created_at=now or utc_now(),
        )
        if not self.repository.insert_reservation_entry(entry):
            # a concurrent release landed between the key check and the insert
            return "SKIPPED_ALREADY_RELEASED"
        return "RELEASED"
