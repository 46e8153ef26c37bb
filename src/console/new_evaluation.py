"""
Client-side flow for starting a "magic evaluation".

Collects a dataset, up to three models and a checklist, submits them to
``POST /v1/evaluations`` and shows a progress estimate while the request is
in flight. The progress is cosmetic: it is driven by a local timer and a
heuristic duration, not by the server.

Usage:
    python -m src.console.new_evaluation --project <id> --dataset <id> \\
        --checklist <id> --model gpt-4-turbo-preview --model claude-2
"""

import argparse
import asyncio
import logging
import sys
from typing import Callable, List, Optional

import httpx
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_MODELS = ["gpt-4-turbo-preview", "gpt-3.5-turbo"]
MAX_MODELS = 3
# Three prompts per model, about five seconds each
SECONDS_PER_MODEL = 3 * 5


class NewEvaluationForm:
    """Selection state of the new-evaluation form."""

    def __init__(self, dataset_id: Optional[str] = None, models: Optional[List[str]] = None,
                 checklist_id: Optional[str] = None):
        self.dataset_id = dataset_id
        self.models: List[str] = list(DEFAULT_MODELS)
        self.checklist_id = checklist_id
        if models is not None:
            self.set_models(models)

    def set_models(self, models: List[str]):
        if len(models) > MAX_MODELS:
            raise ValueError(f"At most {MAX_MODELS} models can be compared at once")
        self.models = list(models)

    @property
    def can_start(self) -> bool:
        return bool(self.dataset_id) and len(self.models) > 0 and bool(self.checklist_id)

    @property
    def time_estimate(self) -> int:
        """Estimated run duration in seconds."""
        return len(self.models) * SECONDS_PER_MODEL

    def payload(self) -> dict:
        return {
            "datasetId": self.dataset_id,
            "models": self.models,
            "checklistId": self.checklist_id,
        }


class ProgressSimulator:
    """Percentage counter that advances on a timer until stopped.

    Each tick adds ``100 / time_estimate`` percent, so the bar reaches 100
    after roughly ``time_estimate`` ticks and then stays there.
    """

    def __init__(self, time_estimate: float, interval: float = 1.0,
                 on_progress: Optional[Callable[[float], None]] = None):
        if time_estimate <= 0:
            raise ValueError("time_estimate must be positive")
        self.time_estimate = time_estimate
        self.interval = interval
        self.on_progress = on_progress
        self.progress = 0.0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        self.progress = 0.0
        self._task = asyncio.create_task(self._tick())

    async def _tick(self):
        while True:
            await asyncio.sleep(self.interval)
            self.progress = min(100.0, self.progress + 100.0 / self.time_estimate)
            if self.on_progress:
                self.on_progress(self.progress)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "ProgressSimulator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()


def results_path(evaluation_id: str) -> str:
    return f"/evaluations/{evaluation_id}"


async def start_evaluation(client: httpx.AsyncClient, project_id: str, form: NewEvaluationForm,
                           on_progress: Optional[Callable[[float], None]] = None,
                           interval: float = 1.0) -> Optional[str]:
    """Submit the form and return the new evaluation id.

    The progress simulator runs for as long as the request does. Returns
    None when the server answered without an evaluation id.
    """
    if not form.can_start:
        raise ValueError("You need to add at least one prompt, one model, and one check to start an Evaluation")

    async with ProgressSimulator(form.time_estimate, interval=interval, on_progress=on_progress):
        response = await client.post(
            "/v1/evaluations",
            params={"projectId": project_id},
            json=form.payload(),
        )

    response.raise_for_status()
    evaluation_id = response.json().get("evaluationId")
    if not evaluation_id:
        logger.warning("Evaluation request returned no evaluationId")
        return None
    return evaluation_id


def _print_progress(progress: float):
    width = 30
    filled = int(width * progress / 100)
    sys.stdout.write(f"\r  [{'#' * filled}{'.' * (width - filled)}] {progress:5.1f}%")
    sys.stdout.flush()


async def _run(args) -> int:
    try:
        form = NewEvaluationForm(args.dataset, args.model or None, args.checklist)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    async with httpx.AsyncClient(base_url=args.api_url, timeout=None) as client:
        try:
            evaluation_id = await start_evaluation(client, args.project, form, on_progress=_print_progress)
        except httpx.HTTPStatusError as e:
            print(f"\nerror: {e.response.status_code} {e.response.text}", file=sys.stderr)
            return 1
        except ValueError as e:
            print(f"error: {e}", file=sys.stderr)
            return 2

    if not evaluation_id:
        return 1
    print(f"\nEvaluation {evaluation_id} started, results at {results_path(evaluation_id)}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Start a prompt evaluation")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--project", required=True, help="Project id")
    parser.add_argument("--dataset", help="Dataset id")
    parser.add_argument("--checklist", help="Checklist id")
    parser.add_argument("--model", action="append", help=f"Model to compare (repeat, max {MAX_MODELS})")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
