from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Optional, Protocol
import uuid

import httpx

from app.core.config import authorizenet_configured, cardpointe_configured, settings
from app.models.schemas import Credential, OpaqueCredential, PaymentCredential

logger = logging.getLogger(__name__)

APPROVED = "approved"
DECLINED = "declined"
ERROR = "error"


@dataclass(frozen=True)
class PaymentOutcome:
    status: str
    reference_id: Optional[str] = None
    message: str = ""

    @classmethod
    def success(cls, reference_id: str, message: str = "Approved") -> "PaymentOutcome":
        return cls(APPROVED, reference_id, message)

    @classmethod
    def decline(cls, message: str) -> "PaymentOutcome":
        return cls(DECLINED, None, message or "Transaction declined")

    @classmethod
    def failure(cls, message: str) -> "PaymentOutcome":
        return cls(ERROR, None, message or "Payment failed")

    @property
    def is_approved(self) -> bool:
        return self.status == APPROVED and bool(self.reference_id)


@dataclass(frozen=True)
class PaymentMetadata:
    invoice_number: str
    name: str
    email: str
    phone: str
    description: str = ""
    extra: dict[str, str] = field(default_factory=dict)


class PaymentGateway(Protocol):
    def authorize(
        self, amount_cents: int, credential: Credential, metadata: PaymentMetadata
    ) -> PaymentOutcome: ...


def amount_in_cents(amount: int) -> int:
    return amount * 100


class CardPointeGateway:
    """Auth-and-capture against the CardPointe REST gateway.

    ``respstat`` is ``A`` for approved, ``B`` for retry and ``C`` for declined;
    ``retref`` is the retrieval reference kept as the payment reference.
    """

    def __init__(
        self,
        site: str,
        merchant_id: str,
        username: str,
        password: str,
        currency: str = "USD",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_url = f"https://{site}.cardconnect.com/cardconnect/rest"
        self.merchant_id = merchant_id
        self.currency = currency
        self._auth = (username, password)
        self._timeout = timeout
        self._transport = transport

    def _request_body(
        self, amount_cents: int, credential: PaymentCredential, metadata: PaymentMetadata
    ) -> dict:
        body = {
            "merchid": self.merchant_id,
            "account": credential.token,
            "expiry": credential.expiry,
            "cvv2": credential.cvv,
            "amount": str(amount_cents),
            "currency": self.currency,
            "capture": "y",
            "receipt": "y",
            "name": metadata.name,
            "email": metadata.email,
            "userfields": {"invoice": metadata.invoice_number, "phone": metadata.phone, **metadata.extra},
        }
        if credential.postal:
            body["postal"] = credential.postal
        return body

    def authorize(
        self, amount_cents: int, credential: Credential, metadata: PaymentMetadata
    ) -> PaymentOutcome:
        if not isinstance(credential, PaymentCredential):
            return PaymentOutcome.failure("CardPointe requires a card token")
        body = self._request_body(amount_cents, credential, metadata)
        try:
            with httpx.Client(auth=self._auth, timeout=self._timeout, transport=self._transport) as client:
                response = client.put(f"{self.api_url}/auth", json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.warning("CardPointe request timed out for %s", metadata.invoice_number)
            return PaymentOutcome.failure("Payment gateway timed out")
        except httpx.HTTPStatusError as exc:
            return PaymentOutcome.failure(
                f"CardPointe API error: {exc.response.status_code} {exc.response.reason_phrase}"
            )
        except httpx.HTTPError as exc:
            logger.warning("CardPointe transport error: %s", exc)
            return PaymentOutcome.failure("Payment gateway unavailable")
        except ValueError:
            return PaymentOutcome.failure("Malformed payment gateway response")
        return outcome_from_cardpointe(data)


def outcome_from_cardpointe(data) -> PaymentOutcome:
    if not isinstance(data, dict):
        return PaymentOutcome.failure("Malformed payment gateway response")
    respstat = data.get("respstat")
    message = data.get("resptext") or ""
    if respstat == "A":
        if not data.get("retref"):
            return PaymentOutcome.failure("Approved response is missing a reference")
        return PaymentOutcome.success(str(data["retref"]), message or "Approved")
    if respstat in ("B", "C"):
        return PaymentOutcome.decline(message)
    return PaymentOutcome.failure("Malformed payment gateway response")


class AuthorizeNetGateway:
    """Auth-capture through the Authorize.Net JSON API with Accept.js payment data.

    The request is a ``createTransactionRequest``; element order matters because
    the gateway maps the JSON onto its XML schema. ``messages.resultCode`` is
    ``Ok`` or ``Error``; within ``transactionResponse``, ``responseCode`` 1 is
    approved, 2 declined, 3 error and 4 held for review.
    """

    SANDBOX_URL = "https://apitest.authorize.net/xml/v1/request.api"
    PRODUCTION_URL = "https://api.authorize.net/xml/v1/request.api"

    def __init__(
        self,
        login_id: str,
        transaction_key: str,
        production: bool = False,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_url = self.PRODUCTION_URL if production else self.SANDBOX_URL
        self._login_id = login_id
        self._transaction_key = transaction_key
        self._timeout = timeout
        self._transport = transport

    def _request_body(
        self, amount_cents: int, credential: OpaqueCredential, metadata: PaymentMetadata
    ) -> dict:
        first_name, _, last_name = metadata.name.strip().partition(" ")
        order = {"invoiceNumber": metadata.invoice_number}
        if metadata.description:
            order["description"] = metadata.description
        return {
            "createTransactionRequest": {
                "merchantAuthentication": {
                    "name": self._login_id,
                    "transactionKey": self._transaction_key,
                },
                "transactionRequest": {
                    "transactionType": "authCaptureTransaction",
                    "amount": f"{amount_cents // 100}.{amount_cents % 100:02d}",
                    "payment": {
                        "opaqueData": {
                            "dataDescriptor": credential.data_descriptor,
                            "dataValue": credential.data_value,
                        }
                    },
                    "order": order,
                    "customer": {"email": metadata.email},
                    "billTo": {
                        "firstName": first_name or metadata.name,
                        "lastName": last_name.strip(),
                        "phoneNumber": metadata.phone,
                    },
                },
            }
        }

    def authorize(
        self, amount_cents: int, credential: Credential, metadata: PaymentMetadata
    ) -> PaymentOutcome:
        if not isinstance(credential, OpaqueCredential):
            return PaymentOutcome.failure("Authorize.Net requires Accept.js payment data")
        body = self._request_body(amount_cents, credential, metadata)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self.api_url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.warning("Authorize.Net request timed out for %s", metadata.invoice_number)
            return PaymentOutcome.failure("Payment gateway timed out")
        except httpx.HTTPStatusError as exc:
            return PaymentOutcome.failure(
                f"Authorize.Net API error: {exc.response.status_code} {exc.response.reason_phrase}"
            )
        except httpx.HTTPError as exc:
            logger.warning("Authorize.Net transport error: %s", exc)
            return PaymentOutcome.failure("Payment gateway unavailable")
        except ValueError:
            return PaymentOutcome.failure("Malformed payment gateway response")
        return outcome_from_authorizenet(data)


def _error_texts(transaction: dict) -> str:
    errors = transaction.get("errors") or []
    return ", ".join(error.get("errorText", "") for error in errors if isinstance(error, dict))


def outcome_from_authorizenet(data) -> PaymentOutcome:
    if not isinstance(data, dict):
        return PaymentOutcome.failure("Malformed payment gateway response")
    result_code = (data.get("messages") or {}).get("resultCode")
    transaction = data.get("transactionResponse") or {}
    if not isinstance(transaction, dict):
        return PaymentOutcome.failure("Malformed payment gateway response")
    response_code = str(transaction.get("responseCode", ""))
    if result_code == "Ok" and response_code in ("1", "4"):
        trans_id = transaction.get("transId")
        if not trans_id or trans_id == "0":
            return PaymentOutcome.failure("Approved response is missing a reference")
        messages = transaction.get("messages") or [{}]
        return PaymentOutcome.success(str(trans_id), messages[0].get("description") or "Approved")
    if response_code == "2":
        return PaymentOutcome.decline(_error_texts(transaction) or "Transaction declined")
    if result_code in ("Ok", "Error"):
        message = _error_texts(transaction)
        if not message:
            top = (data.get("messages") or {}).get("message") or [{}]
            message = top[0].get("text") or "Transaction failed"
        return PaymentOutcome.failure(message)
    return PaymentOutcome.failure("Malformed payment gateway response")


class DemoGateway:
    """Approves everything except tokens or payment data starting with ``decline``."""

    def authorize(
        self, amount_cents: int, credential: Credential, metadata: PaymentMetadata
    ) -> PaymentOutcome:
        if isinstance(credential, OpaqueCredential):
            marker = credential.data_value
        else:
            marker = credential.token
        if marker.lower().startswith("decline"):
            return PaymentOutcome.decline("Card declined")
        return PaymentOutcome.success(f"demo-{uuid.uuid4().hex[:12]}")


def get_payment_gateway() -> PaymentGateway:
    provider = settings.payment_provider
    if provider == "demo":
        return DemoGateway()
    if provider == "cardpointe":
        if not cardpointe_configured():
            raise RuntimeError("CardPointe gateway is not configured")
        return CardPointeGateway(
            site=settings.cardpointe_site,
            merchant_id=settings.cardpointe_merchant_id,
            username=settings.cardpointe_username,
            password=settings.cardpointe_password,
            currency=settings.payment_currency,
            timeout=settings.payment_timeout_seconds,
        )
    if provider == "authorizenet":
        if not authorizenet_configured():
            raise RuntimeError("Authorize.Net gateway is not configured")
        return AuthorizeNetGateway(
            login_id=settings.authorizenet_login_id,
            transaction_key=settings.authorizenet_transaction_key,
            production=settings.authorizenet_environment == "production",
            timeout=settings.payment_timeout_seconds,
        )
    raise RuntimeError(f"Unknown payment provider: {provider}")
