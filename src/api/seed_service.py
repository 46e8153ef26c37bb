"""
seed_service.py: Demo data seeder for PromptLab.

Fills a local database with one organization, two projects, a month of
runs, a dataset with prompt variations and an evaluation checklist so the
API has something to show on first launch.
"""

import json, os, random, sqlite3, uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from . import config
from .sqlite_service import SCHEMA


def _uid():
    return str(uuid.uuid4())


def _ts(dt):
    # Same format as SQLite's CURRENT_TIMESTAMP so date filters compare correctly
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _jitter(base, h=6):
    return base + timedelta(hours=random.uniform(0, h), minutes=random.randint(0, 59))


def seed_demo_data(db_path: Optional[str] = None) -> dict:
    """Insert the demo organization and its data into the DB. Returns summary counts."""
    random.seed(42)
    db_path = db_path or config.SQLITE_DB_PATH
    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    now = datetime.now(timezone.utc)

    org_id = _uid()
    projects = [
        {"id": _uid(), "name": "Support Chatbot"},
        {"id": _uid(), "name": "Marketing Copy"},
    ]

    # ── Runs: a few per day over the usage window, busier on weekdays ──
    runs = []
    for project in projects:
        for days_ago in range(config.USAGE_WINDOW_DAYS - 1):
            day = (now - timedelta(days=days_ago)).replace(hour=8, minute=0, second=0, microsecond=0)
            per_day = random.randint(2, 12) if day.weekday() < 5 else random.randint(0, 3)
            for _ in range(per_day):
                runs.append((_uid(), _ts(_jitter(day, h=10)), project["id"], "llm",
                             random.choice(["gpt-3.5-turbo", "gpt-4-turbo-preview", "claude-2"])))

    dataset_id = _uid()
    prompts = [
        {
            "id": _uid(),
            "messages": [
                {"role": "system", "content": "You are a helpful support agent for {{product}}."},
                {"role": "user", "content": "{{question}}"},
            ],
            "variations": [
                {"variables": {"product": "Acme Router", "question": "How do I reset my password?"},
                 "ideal_output": None},
                {"variables": {"product": "Acme Router", "question": "Is there a warranty?"},
                 "ideal_output": None},
            ],
        },
        {
            "id": _uid(),
            "messages": [
                {"role": "user", "content": "Reply with a JSON object containing the capital of {{country}} under the key \"capital\"."},
            ],
            "variations": [
                {"variables": {"country": "France"}, "ideal_output": '{"capital": "Paris"}'},
                {"variables": {"country": "Japan"}, "ideal_output": '{"capital": "Tokyo"}'},
            ],
        },
    ]

    checklist = {
        "id": _uid(),
        "slug": "polite-and-short",
        "type": "evaluation",
        "data": [
            {"type": "length", "params": {"operator": "lt", "value": 800}},
            {"type": "not_contains", "params": {"value": "as an AI language model"}},
        ],
    }

    conn = sqlite3.connect(db_path)
    try:
        for statement in SCHEMA:
            conn.execute(statement)

        conn.execute(
            "INSERT INTO org (id, created_at, name, plan, plan_period, play_allowance, verified) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (org_id, _ts(now - timedelta(days=60)), "Demo Org", "pro", "monthly",
             config.PLAN_PLAY_ALLOWANCE["pro"], 1),
        )
        for project in projects:
            conn.execute(
                "INSERT INTO app (id, created_at, name, org_id) VALUES (?, ?, ?, ?)",
                (project["id"], _ts(now - timedelta(days=59)), project["name"], org_id),
            )
        conn.executemany("INSERT INTO run (id, created_at, app, type, name) VALUES (?, ?, ?, ?, ?)", runs)

        main_project = projects[0]["id"]
        conn.execute(
            "INSERT INTO dataset (id, app_id, slug) VALUES (?, ?, ?)",
            (dataset_id, main_project, "support-questions"),
        )
        variation_count = 0
        for prompt in prompts:
            conn.execute(
                "INSERT INTO dataset_prompt (id, dataset_id, messages) VALUES (?, ?, ?)",
                (prompt["id"], dataset_id, json.dumps(prompt["messages"])),
            )
            for variation in prompt["variations"]:
                conn.execute(
                    "INSERT INTO dataset_prompt_variation (id, prompt_id, variables, ideal_output) VALUES (?, ?, ?, ?)",
                    (_uid(), prompt["id"], json.dumps(variation["variables"]), variation["ideal_output"]),
                )
                variation_count += 1
        conn.execute(
            "INSERT INTO checklist (id, app_id, slug, type, data) VALUES (?, ?, ?, ?, ?)",
            (checklist["id"], main_project, checklist["slug"], checklist["type"], json.dumps(checklist["data"])),
        )
        conn.commit()
    finally:
        conn.close()

    return {
        "org_id": org_id,
        "project_ids": [p["id"] for p in projects],
        "dataset_id": dataset_id,
        "checklist_id": checklist["id"],
        "runs": len(runs),
        "prompts": len(prompts),
        "variations": variation_count,
    }
