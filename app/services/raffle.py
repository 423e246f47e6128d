"""Ticket assignment: allocate a random ticket, charge its number, settle.

An entry runs as three separate steps with no lock held across them:

1. one transaction picks a random ``available`` row with
   ``FOR UPDATE SKIP LOCKED`` and marks it ``reserved``;
2. the gateway is asked for exactly ``number`` units;
3. the ticket is marked ``sold`` on approval, otherwise put back to
   ``available`` with the buyer cleared.

Gateway exceptions are folded into a ``PaymentOutcome`` before step 3, so
every outcome other than an approval goes through ``release_reservation``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional, Union
import uuid

from fastapi import HTTPException

from app.core.config import settings
from app.db.connection import DatabaseError, DriverError, execute, is_retryable, run_transaction
from app.models.schemas import BuyerIdentity, Credential
from app.services import throttle
from app.services.payments import PaymentGateway, PaymentMetadata, PaymentOutcome, amount_in_cents
from app.services.tickets import CLEARED_COLUMNS, count_all, count_by_state

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    SOLD_OUT = "SoldOut"
    ALLOCATION_FAILED = "AllocationFailed"
    PAYMENT_FAILED = "PaymentFailed"
    VALIDATION_ERROR = "ValidationError"
    BLOCKED = "Blocked"


@dataclass(frozen=True)
class Reservation:
    ticket_id: int
    number: int
    reservation_id: uuid.UUID


@dataclass(frozen=True)
class EntrySuccess:
    ticket_number: int
    amount_charged: int
    payment_reference: str


@dataclass(frozen=True)
class EntryFailure:
    kind: ErrorKind
    message: str
    blocked: Optional[bool] = None
    remaining_attempts: Optional[int] = None


EntryResult = Union[EntrySuccess, EntryFailure]


class ReservationLostError(RuntimeError):
    """The gateway approved a charge for a reservation that no longer exists."""

    def __init__(self, reservation: Reservation, payment_reference: str) -> None:
        self.reservation = reservation
        self.payment_reference = payment_reference
        super().__init__(
            f"Ticket {reservation.number} was no longer reserved when payment "
            f"{payment_reference} was approved"
        )


def allocate_ticket(buyer: BuyerIdentity) -> Optional[Reservation]:
    reservation_id = uuid.uuid4()

    def _handler(conn):
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, number
            FROM tickets
            WHERE state = 'available'
            ORDER BY random()
            LIMIT 1
            FOR UPDATE SKIP LOCKED
            """
        )
        row = cur.fetchone()
        if row is None:
            cur.close()
            return None
        ticket_id, number = row
        cur.execute(
            """
            UPDATE tickets
            SET state = 'reserved',
                buyer_name = %s,
                buyer_email = %s,
                buyer_phone = %s,
                reservation_id = %s,
                reserved_at = now()
            WHERE id = %s AND state = 'available'
            """,
            (buyer.name, buyer.email, buyer.phone, reservation_id, ticket_id),
        )
        reserved = cur.rowcount
        cur.close()
        if reserved != 1:
            return None
        return Reservation(ticket_id=ticket_id, number=number, reservation_id=reservation_id)

    try:
        return run_transaction(_handler, isolation=settings.allocation_isolation)
    except DatabaseError as exc:
        if is_retryable(exc):
            logger.info("Allocation transaction lost a serialization race: %s", exc)
            return None
        raise


def finalize_sale(reservation: Reservation, payment_reference: str) -> bool:
    affected = execute(
        """
        UPDATE tickets
        SET state = 'sold',
            amount_charged = number,
            payment_reference = %s,
            sold_at = now()
        WHERE id = %s AND reservation_id = %s AND state = 'reserved'
        """,
        (payment_reference, reservation.ticket_id, reservation.reservation_id),
    )
    return affected == 1


def release_reservation(reservation: Reservation) -> bool:
    affected = execute(
        f"""
        UPDATE tickets
        SET {CLEARED_COLUMNS}
        WHERE id = %s AND reservation_id = %s AND state = 'reserved'
        """,
        (reservation.ticket_id, reservation.reservation_id),
    )
    return affected == 1


def charge(
    gateway: PaymentGateway,
    reservation: Reservation,
    buyer: BuyerIdentity,
    credential: Credential,
) -> PaymentOutcome:
    metadata = PaymentMetadata(
        invoice_number=f"RAFFLE-{reservation.number}",
        description=f"Raffle ticket {reservation.number}",
        name=buyer.name,
        email=buyer.email,
        phone=buyer.phone,
    )
    try:
        outcome = gateway.authorize(amount_in_cents(reservation.number), credential, metadata)
    except Exception as exc:
        logger.exception("Payment gateway raised for ticket %s", reservation.number)
        return PaymentOutcome.failure(str(exc) or "Payment failed")
    if not isinstance(outcome, PaymentOutcome):
        return PaymentOutcome.failure("Malformed payment gateway response")
    return outcome


def _complete(reservation: Reservation, outcome: PaymentOutcome) -> EntrySuccess:
    if not finalize_sale(reservation, outcome.reference_id):
        logger.error(
            "Payment %s approved for ticket %s but the reservation is gone",
            outcome.reference_id,
            reservation.number,
        )
        raise ReservationLostError(reservation, outcome.reference_id)
    logger.info("Ticket %s sold, payment %s", reservation.number, outcome.reference_id)
    return EntrySuccess(
        ticket_number=reservation.number,
        amount_charged=reservation.number,
        payment_reference=outcome.reference_id,
    )


def _compensate(
    reservation: Reservation,
    outcome: PaymentOutcome,
    client_id: Optional[str],
    credential: Credential,
) -> EntryFailure:
    if release_reservation(reservation):
        logger.warning(
            "Released ticket %s after %s payment: %s",
            reservation.number,
            outcome.status,
            outcome.message,
        )
    else:
        logger.warning("Ticket %s was already released", reservation.number)

    blocked = None
    remaining = None
    if client_id:
        try:
            decision = throttle.record_failure(client_id, credential.last_four, outcome.message)
            blocked = decision["blocked"]
            remaining = throttle.remaining_attempts(client_id)
        except DriverError:
            logger.exception("Could not record failed payment for %s", client_id)
    return EntryFailure(
        kind=ErrorKind.PAYMENT_FAILED,
        message=f"{outcome.message}. Your card was not charged. Please try again.",
        blocked=blocked,
        remaining_attempts=remaining,
    )


def enter_raffle(
    buyer: BuyerIdentity,
    credential: Credential,
    gateway: PaymentGateway,
    client_id: Optional[str] = None,
) -> EntryResult:
    if client_id and throttle.is_blocked(client_id):
        return EntryFailure(
            kind=ErrorKind.BLOCKED,
            message="Too many failed payment attempts. Please try again later.",
            blocked=True,
        )

    if count_by_state("available") == 0:
        if count_all() == 0:
            raise HTTPException(status_code=409, detail="Ticket pool is not initialized")
        return EntryFailure(kind=ErrorKind.SOLD_OUT, message="All tickets have been sold out!")

    reservation = allocate_ticket(buyer)
    if reservation is None:
        return EntryFailure(
            kind=ErrorKind.ALLOCATION_FAILED,
            message="All tickets sold out during processing. Please try again.",
        )
    logger.info("Reserved ticket %s", reservation.number)

    outcome = charge(gateway, reservation, buyer, credential)
    if outcome.is_approved:
        return _complete(reservation, outcome)
    return _compensate(reservation, outcome, client_id, credential)
