"""
SQLite-backed storage service.

Relational tables (org, app, run, datasets, checklists, evaluations) queried
with plain parameterized SQL. Rows are converted to the API models on the
way out.
"""

import aiosqlite
import json
import os
import uuid
from typing import Any, Dict, List, Optional

from .models import (
    Org, Project, UsagePoint, Dataset, DatasetPrompt, PromptVariation,
    PromptVariationCreate, ChatMessage, Checklist, ChecklistCreate,
    Evaluation, EvaluationResult, EvaluationStatus, AssertionOutcome,
)
from . import config

import logging
logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS org (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        name TEXT,
        plan TEXT NOT NULL DEFAULT 'free',
        plan_period TEXT,
        billing TEXT,
        play_allowance INTEGER NOT NULL DEFAULT 0 CHECK (play_allowance >= 0),
        limited INTEGER NOT NULL DEFAULT 0,
        verified INTEGER NOT NULL DEFAULT 0,
        canceled INTEGER NOT NULL DEFAULT 0,
        stripe_customer TEXT,
        stripe_subscription TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        name TEXT NOT NULL,
        org_id TEXT NOT NULL REFERENCES org(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS run (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        app TEXT NOT NULL REFERENCES app(id),
        type TEXT NOT NULL DEFAULT 'llm',
        name TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dataset (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        app_id TEXT NOT NULL REFERENCES app(id),
        slug TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dataset_prompt (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        dataset_id TEXT NOT NULL REFERENCES dataset(id),
        messages TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dataset_prompt_variation (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        prompt_id TEXT NOT NULL REFERENCES dataset_prompt(id),
        variables TEXT NOT NULL,
        ideal_output TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS checklist (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        app_id TEXT NOT NULL REFERENCES app(id),
        slug TEXT NOT NULL,
        type TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evaluation (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        name TEXT NOT NULL,
        app_id TEXT NOT NULL REFERENCES app(id),
        dataset_id TEXT NOT NULL REFERENCES dataset(id),
        checklist_id TEXT NOT NULL REFERENCES checklist(id),
        models TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        error TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evaluation_result (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        evaluation_id TEXT NOT NULL REFERENCES evaluation(id),
        prompt_id TEXT NOT NULL,
        variation_id TEXT,
        model TEXT NOT NULL,
        output TEXT,
        results TEXT NOT NULL,
        passed INTEGER NOT NULL DEFAULT 0,
        duration_ms INTEGER NOT NULL DEFAULT 0,
        error TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_app_org ON app(org_id)",
    "CREATE INDEX IF NOT EXISTS idx_run_app_created ON run(app, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_dataset_app ON dataset(app_id)",
    "CREATE INDEX IF NOT EXISTS idx_prompt_dataset ON dataset_prompt(dataset_id)",
    "CREATE INDEX IF NOT EXISTS idx_variation_prompt ON dataset_prompt_variation(prompt_id)",
    "CREATE INDEX IF NOT EXISTS idx_checklist_app ON checklist(app_id)",
    "CREATE INDEX IF NOT EXISTS idx_eval_app ON evaluation(app_id)",
    "CREATE INDEX IF NOT EXISTS idx_result_eval ON evaluation_result(evaluation_id)",
]


class SQLiteService:
    """Local SQLite storage service."""

    def __init__(self, db_path: Optional[str] = None):
        self._db_path = db_path or config.SQLITE_DB_PATH
        self._initialized = False

    async def _ensure_initialized(self):
        if self._initialized:
            return
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            for statement in SCHEMA:
                await db.execute(statement)
            await db.commit()
        self._initialized = True

    def _conn(self) -> aiosqlite.Connection:
        """Return an aiosqlite connection context manager (do NOT await here)."""
        return aiosqlite.connect(self._db_path)

    async def _fetchall(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        await self._ensure_initialized()
        async with self._conn() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    async def _fetchone(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    async def _execute(self, query: str, params: tuple = ()) -> int:
        """Run a write statement and return the number of affected rows."""
        await self._ensure_initialized()
        async with self._conn() as db:
            cursor = await db.execute(query, params)
            await db.commit()
            return cursor.rowcount

    # ===== Organizations =====

    async def create_org(
        self,
        name: str,
        plan: str = "free",
        play_allowance: Optional[int] = None,
        stripe_customer: Optional[str] = None,
        stripe_subscription: Optional[str] = None,
        org_id: Optional[str] = None,
    ) -> Org:
        if play_allowance is None:
            play_allowance = config.PLAN_PLAY_ALLOWANCE.get(plan, config.PLAN_PLAY_ALLOWANCE["free"])
        org_id = org_id or _new_id()
        await self._execute(
            """
            INSERT INTO org (id, name, plan, play_allowance, stripe_customer, stripe_subscription)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (org_id, name, plan, play_allowance, stripe_customer, stripe_subscription),
        )
        return await self.get_org(org_id)

    async def get_org(self, org_id: str) -> Optional[Org]:
        row = await self._fetchone(
            """
            SELECT id, created_at, plan, billing, play_allowance, limited, verified,
                   plan_period, canceled, stripe_customer, stripe_subscription, name
            FROM org
            WHERE id = ?
            """,
            (org_id,),
        )
        if not row:
            return None
        if row["billing"]:
            row["billing"] = json.loads(row["billing"])
        return Org(**row)

    async def update_org_name(self, org_id: str, name: str) -> bool:
        return await self._execute("UPDATE org SET name = ? WHERE id = ?", (name, org_id)) > 0

    async def set_org_plan(self, org_id: str, plan: str) -> bool:
        return await self._execute("UPDATE org SET plan = ? WHERE id = ?", (plan, org_id)) > 0

    async def consume_play_allowance(self, org_id: str) -> Optional[int]:
        """Take one unit of playground allowance.

        Returns the remaining allowance, or None when the org has none left
        (or does not exist). The check and the decrement are one statement,
        so concurrent requests cannot push the counter below zero.
        """
        await self._ensure_initialized()
        async with self._conn() as db:
            cursor = await db.execute(
                """
                UPDATE org
                SET play_allowance = play_allowance - 1
                WHERE id = ? AND play_allowance > 0
                RETURNING play_allowance
                """,
                (org_id,),
            )
            row = await cursor.fetchone()
            await db.commit()
            return row[0] if row else None

    async def reset_play_allowances(self) -> int:
        """Restore every org's playground allowance to its plan quota."""
        quotas = config.PLAN_PLAY_ALLOWANCE
        cases = " ".join("WHEN ? THEN ?" for _ in quotas)
        params: list = []
        for plan, quota in quotas.items():
            params.extend([plan, quota])
        params.append(quotas["free"])
        return await self._execute(
            f"UPDATE org SET play_allowance = CASE plan {cases} ELSE ? END",
            tuple(params),
        )

    # ===== Projects =====

    async def create_project(self, org_id: str, name: str, project_id: Optional[str] = None) -> Project:
        project_id = project_id or _new_id()
        await self._execute(
            "INSERT INTO app (id, name, org_id) VALUES (?, ?, ?)",
            (project_id, name, org_id),
        )
        return await self.get_project(project_id)

    async def get_project(self, project_id: str) -> Optional[Project]:
        row = await self._fetchone(
            """
            SELECT id, created_at, name, org_id,
                   EXISTS(SELECT 1 FROM run WHERE run.app = app.id) AS activated
            FROM app
            WHERE id = ?
            """,
            (project_id,),
        )
        return Project(**row) if row else None

    async def list_projects(self, org_id: str) -> List[Project]:
        rows = await self._fetchall(
            """
            SELECT id, created_at, name, org_id,
                   EXISTS(SELECT 1 FROM run WHERE run.app = app.id) AS activated
            FROM app
            WHERE org_id = ?
            ORDER BY created_at
            """,
            (org_id,),
        )
        return [Project(**r) for r in rows]

    # ===== Runs & usage =====

    async def log_run(self, app_id: str, type: str = "llm", name: Optional[str] = None,
                      created_at: Optional[str] = None) -> str:
        run_id = _new_id()
        if created_at:
            await self._execute(
                "INSERT INTO run (id, created_at, app, type, name) VALUES (?, ?, ?, ?, ?)",
                (run_id, created_at, app_id, type, name),
            )
        else:
            await self._execute(
                "INSERT INTO run (id, app, type, name) VALUES (?, ?, ?, ?)",
                (run_id, app_id, type, name),
            )
        return run_id

    async def get_usage(self, org_id: str, project_id: Optional[str] = None,
                        days: int = config.USAGE_WINDOW_DAYS) -> List[UsagePoint]:
        """Daily run counts over the trailing window, newest day first.

        With a project id only that project's runs are counted, otherwise
        every project of the org.
        """
        query = """
            SELECT date(r.created_at) AS date, count(*) AS count
            FROM run r
            JOIN app a ON r.app = a.id
            WHERE a.org_id = ?
        """
        params: list = [org_id]
        if project_id:
            query += " AND r.app = ?"
            params.append(project_id)
        query += """
              AND r.created_at > datetime('now', ?)
            GROUP BY date(r.created_at)
            ORDER BY date DESC
        """
        params.append(f"-{days} days")
        rows = await self._fetchall(query, tuple(params))
        return [UsagePoint(**r) for r in rows]

    # ===== Datasets =====

    async def create_dataset(self, app_id: str, slug: str) -> Dataset:
        dataset_id = _new_id()
        await self._execute(
            "INSERT INTO dataset (id, app_id, slug) VALUES (?, ?, ?)",
            (dataset_id, app_id, slug),
        )
        return await self.get_dataset(dataset_id)

    async def list_datasets(self, app_id: str) -> List[Dataset]:
        rows = await self._fetchall(
            "SELECT id, created_at, app_id, slug FROM dataset WHERE app_id = ? ORDER BY created_at DESC",
            (app_id,),
        )
        return [Dataset(**r) for r in rows]

    async def get_dataset(self, dataset_id: str, with_prompts: bool = False) -> Optional[Dataset]:
        row = await self._fetchone(
            "SELECT id, created_at, app_id, slug FROM dataset WHERE id = ?",
            (dataset_id,),
        )
        if not row:
            return None
        dataset = Dataset(**row)
        if with_prompts:
            dataset.prompts = await self.list_dataset_prompts(dataset_id)
        return dataset

    async def create_dataset_prompt(self, dataset_id: str, messages: List[ChatMessage],
                                    variations: List[PromptVariationCreate]) -> DatasetPrompt:
        await self._ensure_initialized()
        prompt_id = _new_id()
        async with self._conn() as db:
            # Prompt and its variations in one transaction
            await db.execute(
                "INSERT INTO dataset_prompt (id, dataset_id, messages) VALUES (?, ?, ?)",
                (prompt_id, dataset_id, json.dumps([m.model_dump(exclude_none=True) for m in messages])),
            )
            for variation in variations:
                await db.execute(
                    "INSERT INTO dataset_prompt_variation (id, prompt_id, variables, ideal_output) VALUES (?, ?, ?, ?)",
                    (_new_id(), prompt_id, json.dumps(variation.variables), variation.ideal_output),
                )
            await db.commit()
        prompts = await self.list_dataset_prompts(dataset_id)
        return next(p for p in prompts if p.id == prompt_id)

    async def list_dataset_prompts(self, dataset_id: str) -> List[DatasetPrompt]:
        prompt_rows = await self._fetchall(
            "SELECT id, created_at, dataset_id, messages FROM dataset_prompt WHERE dataset_id = ? ORDER BY created_at, rowid",
            (dataset_id,),
        )
        variation_rows = await self._fetchall(
            """
            SELECT v.id, v.created_at, v.prompt_id, v.variables, v.ideal_output
            FROM dataset_prompt_variation v
            JOIN dataset_prompt p ON v.prompt_id = p.id
            WHERE p.dataset_id = ?
            ORDER BY v.created_at, v.rowid
            """,
            (dataset_id,),
        )
        variations_by_prompt: Dict[str, List[PromptVariation]] = {}
        for v in variation_rows:
            v["variables"] = json.loads(v["variables"])
            variations_by_prompt.setdefault(v["prompt_id"], []).append(PromptVariation(**v))

        prompts = []
        for p in prompt_rows:
            p["messages"] = json.loads(p["messages"])
            prompts.append(DatasetPrompt(**p, variations=variations_by_prompt.get(p["id"], [])))
        return prompts

    # ===== Checklists =====

    async def create_checklist(self, app_id: str, checklist: ChecklistCreate) -> Checklist:
        checklist_id = _new_id()
        await self._execute(
            "INSERT INTO checklist (id, app_id, slug, type, data) VALUES (?, ?, ?, ?, ?)",
            (checklist_id, app_id, checklist.slug, checklist.type,
             json.dumps([a.model_dump() for a in checklist.data])),
        )
        return await self.get_checklist(checklist_id)

    async def get_checklist(self, checklist_id: str) -> Optional[Checklist]:
        row = await self._fetchone(
            "SELECT id, created_at, app_id, slug, type, data FROM checklist WHERE id = ?",
            (checklist_id,),
        )
        if not row:
            return None
        row["data"] = json.loads(row["data"])
        return Checklist(**row)

    async def list_checklists(self, app_id: str, type: Optional[str] = None) -> List[Checklist]:
        query = "SELECT id, created_at, app_id, slug, type, data FROM checklist WHERE app_id = ?"
        params: list = [app_id]
        if type:
            query += " AND type = ?"
            params.append(type)
        query += " ORDER BY created_at DESC"
        rows = await self._fetchall(query, tuple(params))
        for r in rows:
            r["data"] = json.loads(r["data"])
        return [Checklist(**r) for r in rows]

    # ===== Evaluations =====

    async def create_evaluation(self, app_id: str, name: str, dataset_id: str,
                                checklist_id: str, models: List[str]) -> Evaluation:
        evaluation_id = _new_id()
        await self._execute(
            """
            INSERT INTO evaluation (id, name, app_id, dataset_id, checklist_id, models, status)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (evaluation_id, name, app_id, dataset_id, checklist_id, json.dumps(models),
             EvaluationStatus.pending.value),
        )
        return await self.get_evaluation(evaluation_id)

    async def get_evaluation(self, evaluation_id: str, with_results: bool = False) -> Optional[Evaluation]:
        row = await self._fetchone(
            """
            SELECT id, created_at, name, app_id, dataset_id, checklist_id, models, status, error
            FROM evaluation
            WHERE id = ?
            """,
            (evaluation_id,),
        )
        if not row:
            return None
        row["models"] = json.loads(row["models"])
        evaluation = Evaluation(**row)
        if with_results:
            evaluation.results = await self.list_evaluation_results(evaluation_id)
        return evaluation

    async def list_evaluations(self, app_id: str) -> List[Evaluation]:
        rows = await self._fetchall(
            """
            SELECT id, created_at, name, app_id, dataset_id, checklist_id, models, status, error
            FROM evaluation
            WHERE app_id = ?
            ORDER BY created_at DESC
            """,
            (app_id,),
        )
        for r in rows:
            r["models"] = json.loads(r["models"])
        return [Evaluation(**r) for r in rows]

    async def update_evaluation_status(self, evaluation_id: str, status: EvaluationStatus,
                                       error: Optional[str] = None) -> bool:
        return await self._execute(
            "UPDATE evaluation SET status = ?, error = ? WHERE id = ?",
            (status.value, error, evaluation_id),
        ) > 0

    async def fail_unfinished_evaluations(self, error: str) -> List[str]:
        """Mark every pending or running evaluation as failed. Returns their ids."""
        rows = await self._fetchall(
            "SELECT id FROM evaluation WHERE status IN (?, ?)",
            (EvaluationStatus.pending.value, EvaluationStatus.running.value),
        )
        ids = [r["id"] for r in rows]
        if ids:
            placeholders = ", ".join("?" for _ in ids)
            await self._execute(
                f"UPDATE evaluation SET status = ?, error = ? WHERE id IN ({placeholders})",
                (EvaluationStatus.failed.value, error, *ids),
            )
        return ids

    async def add_evaluation_result(
        self,
        evaluation_id: str,
        prompt_id: str,
        variation_id: Optional[str],
        model: str,
        output: Optional[str],
        results: List[AssertionOutcome],
        passed: bool,
        duration_ms: int,
        error: Optional[str] = None,
    ) -> str:
        result_id = _new_id()
        await self._execute(
            """
            INSERT INTO evaluation_result
                (id, evaluation_id, prompt_id, variation_id, model, output, results, passed, duration_ms, error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (result_id, evaluation_id, prompt_id, variation_id, model, output,
             json.dumps([r.model_dump() for r in results]), int(passed), duration_ms, error),
        )
        return result_id

    async def list_evaluation_results(self, evaluation_id: str) -> List[EvaluationResult]:
        rows = await self._fetchall(
            """
            SELECT id, created_at, evaluation_id, prompt_id, variation_id, model, output,
                   results, passed, duration_ms, error
            FROM evaluation_result
            WHERE evaluation_id = ?
            ORDER BY created_at, rowid
            """,
            (evaluation_id,),
        )
        for r in rows:
            r["results"] = json.loads(r["results"])
        return [EvaluationResult(**r) for r in rows]


_service: Optional[SQLiteService] = None


def get_db_service() -> SQLiteService:
    global _service
    if not _service:
        _service = SQLiteService()
    return _service
