"""
Test Configuration: fixtures for an async SQLite store, settings and fakes.

Each test gets its own file-backed SQLite database under tmp_path, so
concurrent writes go through real connections and the unique constraint
on supply_orders.command_id is enforced by the database, exactly as in
production.
"""

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from core.config import Settings
from db.session import create_session_factory, init_models
from db.store import SupplyStore

FACILITY_ID = "Hospital-D"
PRODUCT_CODE = "PHYSIO-SALINE-500ML"


@pytest.fixture
async def test_engine(tmp_path):
    """Fresh database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'stockguard.db'}", echo=False)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def store(session_factory):
    return SupplyStore(session_factory, facility_id=FACILITY_ID, product_code=PRODUCT_CODE)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        app_env="test",
        facility_id=FACILITY_ID,
        product_code=PRODUCT_CODE,
        notification_path="MOCK",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'runtime.db'}",
        evaluation_interval_seconds=0.01,
        order_consumer_enabled=False,
    )


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total_ms(self) -> int:
        return int(round(sum(self.calls) * 1000))


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


SOAP_NS = "http://supplychain.example.org/stockupdate"


def _stock_update_response(success=True, message="Stock update received", order_triggered=False, order_id=None):
    order = f"<tns:orderId>{order_id}</tns:orderId>" if order_id else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/" '
        f'xmlns:tns="{SOAP_NS}">'
        "<soap:Body><tns:StockUpdateResponse>"
        f"<tns:success>{str(success).lower()}</tns:success>"
        f"<tns:message>{message}</tns:message>"
        f"<tns:orderTriggered>{str(order_triggered).lower()}</tns:orderTriggered>"
        f"{order}"
        "</tns:StockUpdateResponse></soap:Body></soap:Envelope>"
    ).encode("utf-8")


def _soap_fault(code="soap:Server", reason="Internal error"):
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
        "<soap:Body><soap:Fault>"
        f"<faultcode>{code}</faultcode><faultstring>{reason}</faultstring>"
        "</soap:Fault></soap:Body></soap:Envelope>"
    ).encode("utf-8")


@pytest.fixture
def soap_response():
    return _stock_update_response


@pytest.fixture
def soap_fault():
    return _soap_fault


@pytest.fixture
def order_command():
    return {
        "commandId": "CMD-0001",
        "orderId": "ORD-0001",
        "facilityId": FACILITY_ID,
        "productCode": PRODUCT_CODE,
        "orderQuantity": 100,
        "priority": "URGENT",
        "estimatedDeliveryDate": "2026-01-09T08:00:00+00:00",
    }
