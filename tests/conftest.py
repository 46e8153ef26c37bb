"""
Pytest Configuration and Fixtures

Provides shared fixtures for both unit and integration tests. Every test
gets its own SQLite file under pytest's tmp_path.
"""

import pytest
import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import patch
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport


@pytest.fixture
def sqlite_ts():
    """UTC timestamp `days_ago` days back, in SQLite's CURRENT_TIMESTAMP format."""
    def _ts(days_ago: float = 0) -> str:
        dt = datetime.now(timezone.utc) - timedelta(days=days_ago)
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    return _ts


# ==============================================================================
# Database Service
# ==============================================================================

@pytest.fixture
def db_service(tmp_path):
    """Real SQLite service backed by a throwaway database file."""
    from src.api.sqlite_service import SQLiteService

    return SQLiteService(str(tmp_path / "test.db"))


@pytest.fixture
def run_async():
    """Run a coroutine to completion from a synchronous test."""
    def _run(coro):
        return asyncio.run(coro)
    return _run


@pytest.fixture
def sample_org(db_service, run_async):
    """An org on the pro plan with two playground calls left and one project."""
    async def _create():
        org = await db_service.create_org("Acme", plan="pro", play_allowance=2, stripe_customer="cus_123")
        project = await db_service.create_project(org.id, "Main")
        return {"org_id": org.id, "project_id": project.id}
    return run_async(_create())


@pytest.fixture
def sample_dataset(db_service, run_async, sample_org):
    """A dataset with one templated prompt and two variations, plus a checklist."""
    from src.api.models import ChatMessage, PromptVariationCreate, ChecklistCreate, Assertion

    async def _create():
        dataset = await db_service.create_dataset(sample_org["project_id"], "capitals")
        prompt = await db_service.create_dataset_prompt(
            dataset.id,
            [ChatMessage(role="user", content="What is the capital of {{country}}?")],
            [
                PromptVariationCreate(variables={"country": "France"}, ideal_output="Paris"),
                PromptVariationCreate(variables={"country": "Japan"}, ideal_output="Tokyo"),
            ],
        )
        checklist = await db_service.create_checklist(
            sample_org["project_id"],
            ChecklistCreate(slug="mentions-a-city", data=[
                Assertion(type="length", params={"operator": "lt", "value": 200}),
                Assertion(type="equals_ideal"),
            ]),
        )
        return {**sample_org, "dataset_id": dataset.id, "prompt_id": prompt.id, "checklist_id": checklist.id}
    return run_async(_create())


# ==============================================================================
# FastAPI Test Client Fixtures
# ==============================================================================

@pytest.fixture
def app_with_services(db_service):
    """Create the FastAPI app with every service bound to the test database.

    The lifespan (allowance reset loop) is left out.
    """
    from src.api.main import create_app
    from src.api.evaluator_service import EvaluatorService
    from src.api.billing_service import BillingService
    from src.api.playground_service import PlaygroundService

    with patch('src.api.controllers.db', db_service), \
         patch('src.api.controllers.evaluator', EvaluatorService(db_service)), \
         patch('src.api.controllers.billing', BillingService(db_service, api_key="sk_test_123")), \
         patch('src.api.controllers.playground', PlaygroundService(db_service)):

        test_app = create_app(with_lifespan=False)
        yield test_app, db_service


@pytest.fixture
def test_client(app_with_services):
    """Synchronous test client for simple endpoint tests."""
    app, _ = app_with_services
    with TestClient(app) as client:
        yield client


@pytest.fixture
async def async_client(app_with_services) -> AsyncGenerator[AsyncClient, None]:
    """Async test client for async endpoint tests."""
    app, _ = app_with_services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ==============================================================================
# Sample Request Fixtures
# ==============================================================================

@pytest.fixture
def sample_playground_request():
    """Playground request with a template variable and an assistant turn."""
    return {
        "content": [
            {"role": "system", "content": "You answer questions about {{topic}}."},
            {"role": "ai", "text": "Ask me anything."},
            {"role": "user", "content": "Tell me about {{topic}} in {{style}}."},
        ],
        "extra": {"model": "gpt-4-turbo-preview", "temperature": 0.2, "max_tokens": 64},
        "testValues": {"topic": "volcanoes"},
    }
