import os

# Point the module-level engine at SQLite before anything from mobipay is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import itertools

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from mobipay.database import get_db, init_models
from mobipay.main import app
from mobipay.models import Account, Vehicle
from mobipay.services.mpesa import GatewayFailure, InitiateResult, QueryResult, get_gateway

OWNER_ACCOUNT = "254717564238"
PLATFORM_ACCOUNT = "254112331196"
VEHICLE_CODE = "3025"


class FakeGateway:
    """Stands in for MpesaGateway; records calls and returns canned results."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.initiate_failure: GatewayFailure | None = None
        self.query_result: QueryResult | GatewayFailure = QueryResult(result_code=None)
        self.initiated: list[dict] = []
        self.queried: list[str] = []

    async def initiate(self, phone, amount, reference, description):
        self.initiated.append(
            {"phone": phone, "amount": amount, "reference": reference, "description": description}
        )
        if self.initiate_failure is not None:
            return self.initiate_failure
        n = next(self._ids)
        return InitiateResult(
            merchant_request_id=f"29115-3462002-{n}",
            checkout_request_id=f"ws_CO_1810202610000000{n}",
            response_code="0",
            response_description="Success. Request accepted for processing",
            customer_message="Success. Request accepted for processing",
        )

    async def query(self, checkout_request_id):
        self.queried.append(checkout_request_id)
        return self.query_result


def stk_callback(checkout_id, result_code=0, receipt="QJI1ABCDEF", amount=102, desc=None):
    callback = {
        "MerchantRequestID": "29115-3462002-1",
        "CheckoutRequestID": checkout_id,
        "ResultCode": result_code,
        "ResultDesc": desc
        or ("The service request is processed successfully." if result_code == 0 else "Request cancelled by user"),
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20261018101530},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File-backed so concurrent sessions get separate connections
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mobipay.db'}", poolclass=NullPool)
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session_factory):
    """Owner + platform accounts and the default vehicle 3025."""
    async with session_factory() as session:
        session.add_all([
            Account(account_number=OWNER_ACCOUNT, account_type="OWNER", account_name="Matatu Owner Account"),
            Account(account_number=PLATFORM_ACCOUNT, account_type="PLATFORM", account_name="Developer Account"),
        ])
        await session.flush()
        session.add(Vehicle(code=VEHICLE_CODE, route_name="Default Route", owner_account=OWNER_ACCOUNT))
        await session.commit()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def client(session_factory, gateway):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_callback():
    return stk_callback
