"""
Unit Tests for the SQLite Service and Demo Seeder
"""

import pytest


class TestOrgStorage:
    """Tests for org rows."""

    @pytest.mark.asyncio
    async def test_create_org_uses_plan_quota(self, db_service):
        from src.api import config

        org = await db_service.create_org("Acme", plan="pro")

        assert org.play_allowance == config.PLAN_PLAY_ALLOWANCE["pro"]
        assert org.created_at is not None

    @pytest.mark.asyncio
    async def test_missing_org(self, db_service):
        assert await db_service.get_org("missing") is None
        assert await db_service.update_org_name("missing", "x") is False
        assert await db_service.consume_play_allowance("missing") is None

    @pytest.mark.asyncio
    async def test_set_org_plan(self, db_service):
        org = await db_service.create_org("Acme")

        assert await db_service.set_org_plan(org.id, "unlimited") is True
        assert (await db_service.get_org(org.id)).plan == "unlimited"


class TestDatasetStorage:
    """Tests for datasets, prompts and variations."""

    @pytest.mark.asyncio
    async def test_prompt_without_variations(self, db_service):
        from src.api.models import ChatMessage

        org = await db_service.create_org("Acme")
        project = await db_service.create_project(org.id, "Main")
        dataset = await db_service.create_dataset(project.id, "plain")

        prompt = await db_service.create_dataset_prompt(
            dataset.id, [ChatMessage(role="user", content="Say hi")], []
        )

        assert prompt.variations == []
        loaded = await db_service.get_dataset(dataset.id, with_prompts=True)
        assert [p.id for p in loaded.prompts] == [prompt.id]
        assert loaded.prompts[0].messages[0].content == "Say hi"

    @pytest.mark.asyncio
    async def test_get_dataset_without_prompts(self, db_service):
        from src.api.models import ChatMessage

        org = await db_service.create_org("Acme")
        project = await db_service.create_project(org.id, "Main")
        dataset = await db_service.create_dataset(project.id, "plain")
        await db_service.create_dataset_prompt(dataset.id, [ChatMessage(role="user", content="x")], [])

        assert (await db_service.get_dataset(dataset.id)).prompts == []


class TestSeedService:
    """Tests for the demo data seeder."""

    @pytest.mark.asyncio
    async def test_seed_demo_data(self, tmp_path):
        from src.api.seed_service import seed_demo_data
        from src.api.sqlite_service import SQLiteService

        db_path = str(tmp_path / "demo.db")
        summary = seed_demo_data(db_path)
        db = SQLiteService(db_path)

        org = await db.get_org(summary["org_id"])
        assert org.plan == "pro"

        projects = await db.list_projects(summary["org_id"])
        assert sorted(p.id for p in projects) == sorted(summary["project_ids"])

        dataset = await db.get_dataset(summary["dataset_id"], with_prompts=True)
        assert len(dataset.prompts) == summary["prompts"] == 2
        assert sum(len(p.variations) for p in dataset.prompts) == summary["variations"] == 4

        checklist = await db.get_checklist(summary["checklist_id"])
        assert checklist.slug == "polite-and-short"

        usage = await db.get_usage(summary["org_id"])
        assert sum(point.count for point in usage) > 0
        assert sum(point.count for point in usage) <= summary["runs"]
