from typing import List, Dict, Any, Optional, Union
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from enum import Enum

from . import config


class CamelModel(BaseModel):
    """Base model for API shapes; fields are snake_case in Python and camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Organization Models ==========

class Org(CamelModel):
    id: str
    created_at: Optional[str] = None
    name: Optional[str] = None
    plan: str = "free"
    plan_period: Optional[str] = None
    billing: Optional[Dict[str, Any]] = None
    play_allowance: int = 0
    limited: bool = False
    verified: bool = False
    canceled: bool = False
    stripe_customer: Optional[str] = None
    stripe_subscription: Optional[str] = None


class OrgUpdate(CamelModel):
    name: str = Field(..., min_length=1)


class Project(CamelModel):
    """A project ("app") of an organization."""
    id: str
    created_at: Optional[str] = None
    name: str
    org_id: str
    # True as soon as at least one run has been logged for the project
    activated: bool = False


class UsagePoint(CamelModel):
    date: str
    count: int


class UpgradeRequest(CamelModel):
    plan: str
    period: str
    origin: str


class UpgradeResponse(CamelModel):
    ok: bool = True
    url: Optional[str] = Field(default=None, description="Checkout URL when a new subscription must be paid for")


# ========== Playground Models ==========

class ChatMessage(CamelModel):
    """Chat message as sent by the client.

    Client messages may carry their text in either ``content`` or ``text``
    and use the ``ai`` role for assistant turns.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    role: str
    content: Optional[str] = None
    text: Optional[str] = None
    function_call: Optional[Dict[str, Any]] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    name: Optional[str] = None


class PlaygroundExtra(BaseModel):
    """Model name and sampling parameters. Keys are forwarded as-is to the provider."""
    model_config = ConfigDict(extra="allow")

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    stop: Optional[Union[str, List[str]]] = None
    functions: Optional[List[Dict[str, Any]]] = None
    tools: Optional[List[Dict[str, Any]]] = None
    seed: Optional[int] = None


class PlaygroundRequest(CamelModel):
    content: List[ChatMessage]
    extra: Optional[PlaygroundExtra] = None
    test_values: Optional[Dict[str, str]] = None


# ========== Dataset Models ==========

class PromptVariationCreate(CamelModel):
    variables: Dict[str, str] = Field(default_factory=dict)
    ideal_output: Optional[str] = None


class PromptVariation(PromptVariationCreate):
    id: str
    created_at: Optional[str] = None
    prompt_id: str


class DatasetPromptCreate(CamelModel):
    messages: List[ChatMessage] = Field(..., min_length=1)
    variations: List[PromptVariationCreate] = Field(default_factory=list)


class DatasetPrompt(CamelModel):
    id: str
    created_at: Optional[str] = None
    dataset_id: str
    messages: List[ChatMessage]
    variations: List[PromptVariation] = Field(default_factory=list)


class DatasetCreate(CamelModel):
    slug: str = Field(..., min_length=1)


class Dataset(CamelModel):
    id: str
    created_at: Optional[str] = None
    app_id: str
    slug: str
    prompts: List[DatasetPrompt] = Field(default_factory=list)


# ========== Checklist Models ==========

class AssertionType(str, Enum):
    contains = "contains"
    not_contains = "not_contains"
    regex = "regex"
    length = "length"
    json = "json"
    equals_ideal = "equals_ideal"
    llm = "llm"


class Assertion(BaseModel):
    """A single check of a checklist, e.g. ``{"type": "contains", "params": {"value": "Paris"}}``."""
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)


class ChecklistCreate(CamelModel):
    slug: str = Field(..., min_length=1)
    type: str = "evaluation"
    data: List[Assertion] = Field(default_factory=list)


class Checklist(ChecklistCreate):
    id: str
    created_at: Optional[str] = None
    app_id: str


# ========== Evaluation Models ==========

class EvaluationStatus(str, Enum):
    pending = "pending"      # Created, background task not started yet
    running = "running"      # Prompts are being sent to the models
    completed = "completed"  # Every prompt/variation/model combination has a result
    failed = "failed"        # Aborted on an unexpected error


class EvaluationCreate(CamelModel):
    """Body of ``POST /evaluations``."""
    dataset_id: str
    models: List[str] = Field(..., min_length=1, max_length=config.MAX_EVALUATION_MODELS)
    checklist_id: str


class EvaluationCreated(CamelModel):
    evaluation_id: str


class AssertionOutcome(BaseModel):
    type: str
    passed: bool
    reason: str = ""


class EvaluationResult(CamelModel):
    id: str
    created_at: Optional[str] = None
    evaluation_id: str
    prompt_id: str
    variation_id: Optional[str] = None
    model: str
    output: Optional[str] = None
    results: List[AssertionOutcome] = Field(default_factory=list)
    passed: bool = False
    duration_ms: int = 0
    error: Optional[str] = None


class Evaluation(CamelModel):
    id: str
    created_at: Optional[str] = None
    name: str
    app_id: str
    dataset_id: str
    checklist_id: str
    models: List[str]
    status: EvaluationStatus = EvaluationStatus.pending
    error: Optional[str] = None
    results: List[EvaluationResult] = Field(default_factory=list)
