from fastapi import HTTPException, Request

from app.core.config import db_configured
from app.services.payments import PaymentGateway, get_payment_gateway
from app.services.throttle import get_client_ip


def require_db() -> None:
    if not db_configured():
        raise HTTPException(status_code=500, detail="Database is not configured")


def payment_gateway() -> PaymentGateway:
    try:
        return get_payment_gateway()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def client_id(request: Request) -> str:
    peer = request.client.host if request.client else None
    return get_client_ip(request.headers, peer)
