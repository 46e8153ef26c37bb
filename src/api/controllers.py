from typing import List, Optional
from fastapi import APIRouter, HTTPException, Query, BackgroundTasks
from fastapi.responses import StreamingResponse
import logging

logger = logging.getLogger(__name__)

from .models import (
    Org,
    OrgUpdate,
    Project,
    UsagePoint,
    UpgradeRequest,
    UpgradeResponse,
    PlaygroundRequest,
    Dataset,
    DatasetCreate,
    DatasetPrompt,
    DatasetPromptCreate,
    Checklist,
    ChecklistCreate,
    Evaluation,
    EvaluationCreate,
    EvaluationCreated,
)
from .sqlite_service import get_db_service
from .evaluator_service import get_evaluator_service
from .billing_service import get_billing_service
from .playground_service import get_playground_service

router = APIRouter(prefix="/v1")
db = get_db_service()
evaluator = get_evaluator_service(db)
billing = get_billing_service(db)
playground = get_playground_service(db)


async def _require_project(project_id: str) -> Project:
    project = await db.get_project(project_id)
    if not project:
        raise HTTPException(404, f"Project '{project_id}' not found")
    return project


# Organizations
@router.get("/orgs/{org_id}", response_model=Org)
async def get_org(org_id: str):
    org = await db.get_org(org_id)
    if not org:
        raise HTTPException(404, "Org not found")
    return org


@router.patch("/orgs/{org_id}")
async def rename_org(org_id: str, body: OrgUpdate):
    if not await db.update_org_name(org_id, body.name):
        raise HTTPException(404, "Org not found")
    return {}


@router.get("/orgs/{org_id}/projects", response_model=List[Project])
async def list_projects(org_id: str):
    return await db.list_projects(org_id)


@router.get("/orgs/{org_id}/usage", response_model=List[UsagePoint])
async def get_usage(org_id: str, project_id: Optional[str] = Query(default=None, alias="projectId")):
    """Daily run counts over the last 30 days, for one project or the whole org."""
    return await db.get_usage(org_id, project_id=project_id)


@router.post("/orgs/{org_id}/upgrade", response_model=UpgradeResponse, response_model_exclude_none=True)
async def upgrade_plan(org_id: str, body: UpgradeRequest):
    """Move the org to another plan.

    Without an existing subscription the response carries a checkout URL the
    client must redirect to; otherwise the subscription is switched in place.
    """
    return await billing.upgrade(org_id, body.plan, body.period, body.origin)


@router.post("/orgs/{org_id}/playground")
async def playground_completion(org_id: str, body: PlaygroundRequest):
    text_stream = await playground.start_completion(org_id, body)
    return StreamingResponse(
        text_stream,
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        }
    )


# Datasets
@router.get("/datasets", response_model=List[Dataset])
async def list_datasets(project_id: str = Query(..., alias="projectId")):
    return await db.list_datasets(project_id)


@router.post("/datasets", response_model=Dataset, status_code=201)
async def create_dataset(body: DatasetCreate, project_id: str = Query(..., alias="projectId")):
    await _require_project(project_id)
    return await db.create_dataset(project_id, body.slug)


@router.get("/datasets/{dataset_id}", response_model=Dataset)
async def get_dataset(dataset_id: str):
    dataset = await db.get_dataset(dataset_id, with_prompts=True)
    if not dataset:
        raise HTTPException(404, f"Dataset '{dataset_id}' not found")
    return dataset


@router.post("/datasets/{dataset_id}/prompts", response_model=DatasetPrompt, status_code=201)
async def add_dataset_prompt(dataset_id: str, body: DatasetPromptCreate):
    """Add a prompt (chat messages) and its variable variations to a dataset."""
    if not await db.get_dataset(dataset_id):
        raise HTTPException(404, f"Dataset '{dataset_id}' not found")
    return await db.create_dataset_prompt(dataset_id, body.messages, body.variations)


# Checklists
@router.get("/checklists", response_model=List[Checklist])
async def list_checklists(project_id: str = Query(..., alias="projectId"), type: Optional[str] = None):
    return await db.list_checklists(project_id, type=type)


@router.post("/checklists", response_model=Checklist, status_code=201)
async def create_checklist(body: ChecklistCreate, project_id: str = Query(..., alias="projectId")):
    await _require_project(project_id)
    return await db.create_checklist(project_id, body)


# Evaluations
@router.post("/evaluations", response_model=EvaluationCreated, status_code=201)
async def create_evaluation(body: EvaluationCreate, background_tasks: BackgroundTasks,
                            project_id: str = Query(..., alias="projectId")):
    evaluation = await evaluator.create_evaluation(project_id, body)

    # Start evaluation in background
    background_tasks.add_task(evaluator.start_evaluation, evaluation.id)

    return EvaluationCreated(evaluation_id=evaluation.id)


@router.get("/evaluations", response_model=List[Evaluation])
async def list_evaluations(project_id: str = Query(..., alias="projectId")):
    return await db.list_evaluations(project_id)


@router.get("/evaluations/{evaluation_id}", response_model=Evaluation)
async def get_evaluation(evaluation_id: str):
    evaluation = await db.get_evaluation(evaluation_id, with_results=True)
    if not evaluation:
        raise HTTPException(404, f"Evaluation '{evaluation_id}' not found")
    return evaluation
