"""
Evaluator Service for running prompt evaluations against several models.

==============================================================================
FEATURES IMPLEMENTED IN THIS MODULE:
==============================================================================

1. EVALUATION CREATION (Feature: magic-evaluation)
   - Validates that the dataset and checklist belong to the project
   - Creates a pending evaluation row; execution starts as a background task

2. EXECUTION (Feature: magic-evaluation)
   - Every prompt x variation of the dataset is sent to every selected model
   - Outputs are scored with the checklist; pass = every assertion passed
   - A provider error is stored on its result and the run continues
   - Each completion is logged as a run for usage analytics

3. STATUS TRACKING
   - pending -> running -> completed, or failed on an unexpected error
   - cleanup_orphaned_evaluations() fails runs interrupted by a restart

==============================================================================
"""

import time
from datetime import datetime, timezone
from typing import List, Optional

from .models import (
    Evaluation, EvaluationCreate, EvaluationStatus, DatasetPrompt,
    PromptVariation, Checklist,
)
from .sqlite_service import SQLiteService
from .errors import NotFoundError
from .assertions import evaluate_checklist
from .playground_service import call_model, completion_text, compile_messages, convert_input_to_openai_messages

import logging
logger = logging.getLogger(__name__)

ORPHANED_EVALUATION_ERROR = "Server restarted while the evaluation was running"


class EvaluatorService:
    def __init__(self, db_service: SQLiteService):
        logger.info("Initializing EvaluatorService")
        self.db = db_service

    async def create_evaluation(self, project_id: str, request: EvaluationCreate) -> Evaluation:
        """Create a pending evaluation after checking its dataset and checklist."""
        project = await self.db.get_project(project_id)
        if not project:
            raise NotFoundError(f"Project {project_id} not found")

        dataset = await self.db.get_dataset(request.dataset_id)
        if not dataset or dataset.app_id != project_id:
            raise NotFoundError(f"Dataset {request.dataset_id} not found")

        checklist = await self.db.get_checklist(request.checklist_id)
        if not checklist or checklist.app_id != project_id:
            raise NotFoundError(f"Checklist {request.checklist_id} not found")

        name = f"{dataset.slug} / {checklist.slug} ({datetime.now(timezone.utc):%Y-%m-%d %H:%M})"
        evaluation = await self.db.create_evaluation(
            app_id=project_id,
            name=name,
            dataset_id=request.dataset_id,
            checklist_id=request.checklist_id,
            models=request.models,
        )
        logger.info(f"Created evaluation {evaluation.id} for project {project_id} with models {request.models}")
        return evaluation

    async def start_evaluation(self, evaluation_id: str):
        """Run an evaluation to completion. Meant to be scheduled as a background task."""
        evaluation = await self.db.get_evaluation(evaluation_id)
        if not evaluation:
            logger.error(f"Evaluation {evaluation_id} disappeared before it could start")
            return

        await self.db.update_evaluation_status(evaluation_id, EvaluationStatus.running)
        try:
            prompts = await self.db.list_dataset_prompts(evaluation.dataset_id)
            checklist = await self.db.get_checklist(evaluation.checklist_id)
            if not checklist:
                raise NotFoundError(f"Checklist {evaluation.checklist_id} not found")

            for prompt in prompts:
                # A prompt without variations still runs once, untemplated
                variations: List[Optional[PromptVariation]] = list(prompt.variations) or [None]
                for variation in variations:
                    for model in evaluation.models:
                        await self._run_one(evaluation, prompt, variation, model, checklist)
        except Exception as e:
            logger.error(f"Evaluation {evaluation_id} failed: {e}", exc_info=True)
            await self.db.update_evaluation_status(evaluation_id, EvaluationStatus.failed, error=str(e))
            return

        await self.db.update_evaluation_status(evaluation_id, EvaluationStatus.completed)
        logger.info(f"Evaluation {evaluation_id} completed")

    async def cleanup_orphaned_evaluations(self) -> int:
        """Fail evaluations left pending or running by a previous server process.

        Called at startup; background runs do not survive a restart.
        """
        orphaned = await self.db.fail_unfinished_evaluations(ORPHANED_EVALUATION_ERROR)
        for evaluation_id in orphaned:
            logger.warning(f"Marked orphaned evaluation {evaluation_id} as failed")
        return len(orphaned)

    async def _run_one(self, evaluation: Evaluation, prompt: DatasetPrompt,
                       variation: Optional[PromptVariation], model: str, checklist: Checklist):
        variables = variation.variables if variation else None
        messages = convert_input_to_openai_messages(compile_messages(prompt.messages, variables))

        started = time.monotonic()
        try:
            response = await call_model(model, messages)
            output = completion_text(response)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.warning(f"Evaluation {evaluation.id}: {model} failed on prompt {prompt.id}: {e}")
            await self.db.add_evaluation_result(
                evaluation_id=evaluation.id,
                prompt_id=prompt.id,
                variation_id=variation.id if variation else None,
                model=model,
                output=None,
                results=[],
                passed=False,
                duration_ms=duration_ms,
                error=str(e),
            )
            return
        duration_ms = int((time.monotonic() - started) * 1000)

        await self.db.log_run(evaluation.app_id, type="llm", name=model)

        outcomes = await evaluate_checklist(
            checklist.data, output, variation.ideal_output if variation else None
        )
        passed = all(o.passed for o in outcomes)
        await self.db.add_evaluation_result(
            evaluation_id=evaluation.id,
            prompt_id=prompt.id,
            variation_id=variation.id if variation else None,
            model=model,
            output=output,
            results=outcomes,
            passed=passed,
            duration_ms=duration_ms,
        )


_evaluator_service: Optional[EvaluatorService] = None


def get_evaluator_service(db_service: SQLiteService) -> EvaluatorService:
    global _evaluator_service
    if _evaluator_service is None:
        _evaluator_service = EvaluatorService(db_service)
    return _evaluator_service
