"""Shared fixtures: an in-memory server with a small "shop" database."""

import pytest
import pytest_asyncio

import aql
from aql import config, net


USERS = [
    {"id": 1, "name": "Ada", "age": 36, "role": "admin"},
    {"id": 2, "name": "Grace", "age": 45, "role": "user"},
    {"id": 3, "name": "Linus", "age": 17, "role": "user"},
]

ORDERS = [
    {"id": 10, "user_id": 1, "amount": 30},
    {"id": 11, "user_id": 1, "amount": 12},
    {"id": 12, "user_id": 2, "amount": 50},
    {"id": 13, "user_id": 9, "amount": 5},
]


@pytest.fixture(autouse=True)
def reset_globals():
    """Each test starts with default settings and no default connection."""
    saved = config.get_settings()
    yield
    config.configure(saved)
    net.set_default_connection(None)


@pytest.fixture
def server():
    return aql.MemoryServer()


@pytest.fixture
def conn(server):
    return aql.MemoryConnection(server)


@pytest.fixture
def shop():
    return aql.Database("shop")


@pytest_asyncio.fixture
async def populated(conn, shop):
    """Create shop.users and shop.orders filled with USERS and ORDERS."""
    await aql.create_database("shop").run(conn)
    await shop.table_create("users").run(conn)
    await shop.table_create("orders").run(conn)
    await shop.table("users").insert(USERS).run(conn)
    await shop.table("orders").insert(ORDERS).run(conn)
    return shop
