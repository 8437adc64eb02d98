import os
import tempfile

# must be in place before stockreserve settings are imported
_TMP_DIR = tempfile.mkdtemp(prefix="stockreserve-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/stockreserve_test.db"
os.environ["ENABLE_EXPIRY_SWEEPER"] = "false"
os.environ["CONFLICT_RETRY_BASE_DELAY"] = "0.001"
os.environ["ENV"] = "dev"

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel

from stockreserve.auth.utils import create_access_token
from stockreserve.db.connection import async_engine, async_session
from stockreserve.main import app
from stockreserve.schema.full_schema import Inventory
from stockreserve.warehouses.repository import create_warehouse

url_prefix = "/api/v1"


@pytest_asyncio.fixture(autouse=True)
async def fresh_schema():
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield


@pytest_asyncio.fixture
async def db_session():
    async with async_session() as session:
        yield session


@pytest.fixture
def session_maker():
    return async_session


@pytest_asyncio.fixture
async def ac_client():
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


@pytest_asyncio.fixture
async def warehouse_id(db_session):
    wh = await create_warehouse(db_session, "BUC-01", "Bucuresti", is_default=True)
    await db_session.commit()
    return wh["id"]


def auth_headers(caller_id: str = "user-1", roles=()) -> dict:
    return {"Authorization": f"Bearer {create_access_token(caller_id, roles)}"}


@pytest.fixture
def user_headers():
    return auth_headers("user-1")


@pytest.fixture
def admin_headers():
    return auth_headers("ops-1", ["admin"])


async def seed_inventory(session, product_id: int, warehouse_id: int, on_hand: int, reserved: int = 0):
    session.add(Inventory(product_id=product_id, warehouse_id=warehouse_id,
                          quantity_on_hand=on_hand, quantity_reserved=reserved, version=1))
    await session.commit()


async def ledger(session, product_id: int, warehouse_id: int):
    from stockreserve.inventory.repository import get_ledger_row
    row = await get_ledger_row(session, product_id, warehouse_id)
    await session.rollback()
    return row
