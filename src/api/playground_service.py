"""
Playground completion proxy.

==============================================================================
FEATURES IMPLEMENTED IN THIS MODULE:
==============================================================================

1. DAILY ALLOWANCE (Feature: playground-allowance)
   - One unit of the org's playground allowance is taken before any
     provider call; an exhausted allowance never reaches a provider.

2. TEMPLATE VARIABLES (Feature: playground-templates)
   - {{variable}} placeholders in message content are replaced with the
     request's test values; unknown variables become empty strings.

3. PROVIDER SELECTION (Feature: multi-provider)
   - Anthropic-family models go through litellm
   - OpenRouter-hosted models use the OpenAI client pointed at OpenRouter
   - Everything else uses the OpenAI client directly

==============================================================================
"""

import re
from typing import Any, AsyncIterator, Dict, List, Optional

import litellm
from openai import AsyncOpenAI

from .models import ChatMessage, PlaygroundExtra, PlaygroundRequest
from .sqlite_service import SQLiteService
from .errors import AllowanceExhaustedError, NotFoundError
from . import config

import logging
logger = logging.getLogger(__name__)


OPENROUTER_MODELS = [
    "mistralai/mistral-7b-instruct",
    "openai/gpt-4-32k",
    "openchat/openchat-7b",
    "teknium/openhermes-2.5-mistral-7b",
    "mistralai/mixtral-8x7b-instruct",
    "open-orca/mistral-7b-openorca",
    "perplexity/pplx-70b-chat",
    "perplexity/pplx-7b-chat",
    "google/gemini-pro",
    "google/palm-2-chat-bison",
    "meta-llama/llama-2-13b-chat",
    "meta-llama/llama-2-70b-chat",
]

ANTHROPIC_MODELS = ["claude-2", "claude-2.0", "claude-instant-v1"]

# Sampling parameters forwarded from the request's "extra" object
FORWARDED_PARAMS = [
    "temperature",
    "max_tokens",
    "top_p",
    "top_k",
    "presence_penalty",
    "frequency_penalty",
    "stop",
    "functions",
    "tools",
    "seed",
]

# Accepted by litellm but not by the OpenAI SDK's create() signature
NON_OPENAI_PARAMS = {"top_k"}

ALLOWANCE_EXHAUSTED_MESSAGE = (
    "No allowance left today. Wait tomorrow or upgrade to continue using the playground."
)

_TEMPLATE_VARIABLE = re.compile(r"{{(.*?)}}")


def compile_template(content: str, variables: Dict[str, str]) -> str:
    """Replace {{variable}} with its value; missing or empty variables become ''."""
    return _TEMPLATE_VARIABLE.sub(lambda m: variables.get(m.group(1)) or "", content)


def compile_messages(messages: List[ChatMessage], variables: Optional[Dict[str, str]]) -> List[ChatMessage]:
    """Return copies of the messages with their content templated.

    The request objects are left untouched.
    """
    compiled = [m.model_copy() for m in messages]
    if variables is not None:
        for message in compiled:
            if message.content is not None:
                message.content = compile_template(message.content, variables)
    return compiled


def convert_input_to_openai_messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    converted = []
    for message in messages:
        item: Dict[str, Any] = {
            "role": "assistant" if message.role == "ai" else message.role,
            "content": message.content or message.text,
        }
        if message.function_call:
            item["function_call"] = message.function_call
        if message.tool_calls:
            item["tool_calls"] = message.tool_calls
        if message.name:
            item["name"] = message.name
        converted.append(item)
    return converted


def select_provider(model: str) -> str:
    """Return "anthropic", "openrouter" or "openai" for a model identifier."""
    if model in ANTHROPIC_MODELS:
        return "anthropic"
    if model in OPENROUTER_MODELS:
        return "openrouter"
    return "openai"


_openai_clients: Dict[str, AsyncOpenAI] = {}


def get_openai_client(provider: str) -> AsyncOpenAI:
    """Shared client per provider, created on first use."""
    client = _openai_clients.get(provider)
    if client is None:
        client = _openai_clients[provider] = _create_openai_client(provider)
    return client


async def close_openai_clients():
    while _openai_clients:
        _, client = _openai_clients.popitem()
        await client.close()


def _create_openai_client(provider: str) -> AsyncOpenAI:
    if provider == "openrouter":
        return AsyncOpenAI(
            api_key=config.OPENROUTER_API_KEY,
            base_url=config.OPENROUTER_BASE_URL,
            default_headers={
                "HTTP-Referer": config.OPENROUTER_REFERER,
                "X-Title": config.OPENROUTER_TITLE,
            },
        )
    return AsyncOpenAI(api_key=config.OPENAI_API_KEY)


def build_completion_params(model: str, messages: List[Dict[str, Any]],
                            extra: Optional[PlaygroundExtra], stream: bool) -> Dict[str, Any]:
    params: Dict[str, Any] = {"model": model, "messages": messages, "stream": stream}
    if extra:
        for key in FORWARDED_PARAMS:
            value = getattr(extra, key, None)
            if value is not None:
                params[key] = value
    return params


async def call_model(model: str, messages: List[Dict[str, Any]],
                     extra: Optional[PlaygroundExtra] = None, stream: bool = False):
    """Send one chat completion to the provider that serves `model`.

    Returns the provider response: an async iterable of chunks when
    streaming, a completion object otherwise.
    """
    params = build_completion_params(model, messages, extra, stream)
    provider = select_provider(model)
    logger.info(f"Chat completion: model={model} provider={provider} stream={stream}")

    if provider == "anthropic":
        return await litellm.acompletion(**params)

    extra_body = {k: params.pop(k) for k in NON_OPENAI_PARAMS if k in params}
    if extra_body:
        params["extra_body"] = extra_body
    client = get_openai_client(provider)
    return await client.chat.completions.create(**params)


async def stream_text(response) -> AsyncIterator[str]:
    """Yield the text deltas of a streamed chat completion."""
    try:
        async for chunk in response:
            choices = getattr(chunk, "choices", None)
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            content = getattr(delta, "content", None) if delta is not None else None
            if content:
                yield content
    except Exception as e:
        logger.error(f"Completion stream interrupted: {type(e).__name__}: {e}", exc_info=True)
        raise


def completion_text(response) -> str:
    """Text of a non-streamed chat completion."""
    try:
        return response.choices[0].message.content or ""
    except (AttributeError, IndexError):
        return ""


class PlaygroundService:
    def __init__(self, db_service: SQLiteService):
        self.db = db_service

    async def consume_allowance(self, org_id: str) -> int:
        remaining = await self.db.consume_play_allowance(org_id)
        if remaining is None:
            if not await self.db.get_org(org_id):
                raise NotFoundError("Org not found")
            raise AllowanceExhaustedError(ALLOWANCE_EXHAUSTED_MESSAGE)
        return remaining

    async def start_completion(self, org_id: str, request: PlaygroundRequest) -> AsyncIterator[str]:
        """Charge the allowance, open the provider stream and return its text deltas.

        Everything that can fail before the first byte (allowance, provider
        errors) raises here, before a response is started.
        """
        remaining = await self.consume_allowance(org_id)
        logger.info(f"Playground call for org {org_id}, {remaining} call(s) left today")

        model = (request.extra.model if request.extra else None) or config.DEFAULT_PLAYGROUND_MODEL
        messages = convert_input_to_openai_messages(compile_messages(request.content, request.test_values))

        response = await call_model(model, messages, request.extra, stream=True)
        return stream_text(response)


_playground_service: Optional[PlaygroundService] = None


def get_playground_service(db_service: SQLiteService) -> PlaygroundService:
    global _playground_service
    if _playground_service is None:
        _playground_service = PlaygroundService(db_service)
    return _playground_service
