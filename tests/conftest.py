import pytest

from app.models.schemas import BuyerIdentity, PaymentCredential
from app.services import raffle
from fakes import InMemoryPool


@pytest.fixture
def buyer():
    return BuyerIdentity(name="Ada Lovelace", email="ada@example.com", phone="5551234567")


@pytest.fixture
def credential():
    return PaymentCredential(token="9418594164541111", expiry="1230", cvv="123")


@pytest.fixture
def make_pool(monkeypatch):
    def _make(size: int) -> InMemoryPool:
        pool = InMemoryPool(size)
        monkeypatch.setattr(raffle, "count_by_state", pool.count_by_state)
        monkeypatch.setattr(raffle, "count_all", pool.count_all)
        monkeypatch.setattr(raffle, "allocate_ticket", pool.allocate_ticket)
        monkeypatch.setattr(raffle, "finalize_sale", pool.finalize_sale)
        monkeypatch.setattr(raffle, "release_reservation", pool.release_reservation)
        return pool

    return _make
