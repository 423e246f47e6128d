from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.dependencies import client_id, payment_gateway, require_db
from app.core.config import settings
from app.models.schemas import (
    EntryErrorResponse,
    EntryRequest,
    EntryResponse,
    InitializeRequest,
    InitializeResponse,
    SweepResponse,
    TicketBoardResponse,
)
from app.services import raffle, tickets
from app.services.payments import PaymentGateway

router = APIRouter(prefix="/raffle", tags=["raffle"])

ERROR_STATUS = {
    raffle.ErrorKind.SOLD_OUT: 409,
    raffle.ErrorKind.ALLOCATION_FAILED: 409,
    raffle.ErrorKind.PAYMENT_FAILED: 402,
    raffle.ErrorKind.BLOCKED: 403,
    raffle.ErrorKind.VALIDATION_ERROR: 422,
}


@router.post("/init", response_model=InitializeResponse)
def initialize(payload: Optional[InitializeRequest] = None):
    require_db()
    size = payload.size if payload and payload.size else settings.pool_size
    return tickets.initialize_pool(size)


@router.get("/tickets", response_model=TicketBoardResponse)
def list_tickets():
    require_db()
    return tickets.board()


@router.post(
    "/enter",
    response_model=EntryResponse,
    status_code=201,
    responses={status: {"model": EntryErrorResponse} for status in (402, 403, 409)},
)
def enter_raffle(
    payload: EntryRequest,
    gateway: PaymentGateway = Depends(payment_gateway),
    client: str = Depends(client_id),
):
    require_db()
    result = raffle.enter_raffle(payload.buyer, payload.payment, gateway, client_id=client)
    if isinstance(result, raffle.EntryFailure):
        body = EntryErrorResponse(
            error_kind=result.kind.value,
            message=result.message,
            blocked=result.blocked,
            remaining_attempts=result.remaining_attempts,
        )
        return JSONResponse(
            status_code=ERROR_STATUS[result.kind],
            content=body.model_dump(exclude_none=True),
        )
    return {
        "ticket_number": result.ticket_number,
        "amount_charged": result.amount_charged,
        "payment_reference": result.payment_reference,
    }


@router.post("/reservations/sweep", response_model=SweepResponse)
def sweep_reservations():
    require_db()
    return {"released": tickets.release_stale_reservations(settings.reservation_timeout_minutes)}
