import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

from safechat import container
from safechat.infra import redis as redis_infra
from safechat.main import app
from safechat.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    client = FakeRedis(decode_responses=True)
    redis_infra.set_redis_client(client)
    try:
        yield client
    finally:
        redis_infra.set_redis_client(redis_infra._real_client)
        await client.flushall()


@pytest.fixture(autouse=True)
def memory_container():
    """Every test starts from empty in-memory repositories with send limits off."""
    container.configure_memory(rate_limiter=None)
    yield


@pytest.fixture(autouse=True)
def force_test_settings():
    """API tests authenticate via X-User-Id/X-User-Roles, which are only accepted outside production."""
    original_env = settings.environment
    original_sweepers = settings.sweepers_enabled
    settings.environment = "test"
    settings.sweepers_enabled = False
    try:
        yield
    finally:
        settings.environment = original_env
        settings.sweepers_enabled = original_sweepers


@pytest_asyncio.fixture
async def api_client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def rooms():
    return container.get_room_store()


@pytest.fixture
def blocks():
    return container.get_block_registry()


@pytest.fixture
def links():
    return container.get_context_links()


@pytest.fixture
def pipeline():
    return container.get_message_pipeline()


@pytest.fixture
def attachments():
    return container.get_attachment_service()


@pytest.fixture
def chat_service():
    return container.get_chat_service()


@pytest.fixture
def ledger():
    return container.get_moderation_ledger()


@pytest.fixture
def reports():
    return container.get_report_workflow()


@pytest_asyncio.fixture
async def room(chat_service):
    """A general-context room between alice and bob."""
    created, _ = await chat_service.initiate_chat("alice", "bob", "general")
    return created
