"""
Checklist assertions.

A checklist is a list of ``{"type", "params"}`` items; each one is scored
against a model output as pass/fail with a short reason. Deterministic
types are checked locally, ``llm`` asks a judge model.
"""

import json
import re
from typing import List, Optional

from .models import Assertion, AssertionOutcome, AssertionType
from .playground_service import call_model, completion_text
from . import config

import logging
logger = logging.getLogger(__name__)


JUDGE_SYSTEM_PROMPT = (
    "You grade the output of a language model against a criterion. "
    "Answer with PASS or FAIL on the first line, then one sentence of reasoning."
)


def _to_bool(value) -> bool:
    """Read a judge verdict that may be a bool or a word like "PASS"/"false"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "pass", "passed", "1")
    return bool(value)


def _parse_verdict(text: str) -> bool:
    first_line = (text or "").strip().splitlines()[0] if (text or "").strip() else ""
    word = re.sub(r"[^a-zA-Z]", "", first_line.split(" ")[0]) if first_line else ""
    return _to_bool(word)


def check_contains(output: str, params: dict) -> AssertionOutcome:
    value = str(params.get("value", ""))
    case_sensitive = params.get("caseSensitive", False)
    haystack, needle = (output, value) if case_sensitive else (output.lower(), value.lower())
    passed = needle in haystack
    return AssertionOutcome(
        type=AssertionType.contains.value,
        passed=passed,
        reason=f"output {'contains' if passed else 'does not contain'} '{value}'",
    )


def check_not_contains(output: str, params: dict) -> AssertionOutcome:
    outcome = check_contains(output, params)
    return AssertionOutcome(type=AssertionType.not_contains.value, passed=not outcome.passed, reason=outcome.reason)


def check_regex(output: str, params: dict) -> AssertionOutcome:
    pattern = params.get("pattern", "")
    try:
        passed = re.search(pattern, output) is not None
    except re.error as e:
        return AssertionOutcome(type=AssertionType.regex.value, passed=False, reason=f"invalid pattern: {e}")
    return AssertionOutcome(
        type=AssertionType.regex.value,
        passed=passed,
        reason=f"pattern /{pattern}/ {'matched' if passed else 'did not match'}",
    )


def check_length(output: str, params: dict) -> AssertionOutcome:
    operator = params.get("operator", "lt")
    try:
        value = int(params.get("value", 0))
    except (TypeError, ValueError):
        return AssertionOutcome(type=AssertionType.length.value, passed=False, reason="length value is not a number")

    length = len(output)
    if operator == "gt":
        passed = length > value
    elif operator == "lt":
        passed = length < value
    elif operator == "eq":
        passed = length == value
    else:
        return AssertionOutcome(type=AssertionType.length.value, passed=False, reason=f"unknown operator '{operator}'")
    return AssertionOutcome(
        type=AssertionType.length.value,
        passed=passed,
        reason=f"length {length} {operator} {value}",
    )


def check_json(output: str, params: dict) -> AssertionOutcome:
    try:
        json.loads(output)
        return AssertionOutcome(type=AssertionType.json.value, passed=True, reason="valid JSON")
    except ValueError as e:
        return AssertionOutcome(type=AssertionType.json.value, passed=False, reason=f"invalid JSON: {e}")


def check_equals_ideal(output: str, ideal_output: Optional[str]) -> AssertionOutcome:
    if ideal_output is None:
        return AssertionOutcome(type=AssertionType.equals_ideal.value, passed=False, reason="no ideal output for this variation")
    passed = output.strip() == ideal_output.strip()
    return AssertionOutcome(
        type=AssertionType.equals_ideal.value,
        passed=passed,
        reason="matches ideal output" if passed else "differs from ideal output",
    )


DETERMINISTIC_CHECKS = {
    AssertionType.contains.value: check_contains,
    AssertionType.not_contains.value: check_not_contains,
    AssertionType.regex.value: check_regex,
    AssertionType.length.value: check_length,
    AssertionType.json.value: check_json,
}


async def check_llm(output: str, params: dict) -> AssertionOutcome:
    criteria = params.get("criteria", "")
    model = params.get("model") or config.JUDGE_MODEL
    messages = [
        {"role": "system", "content": JUDGE_SYSTEM_PROMPT},
        {"role": "user", "content": f"Criterion: {criteria}\n\nOutput:\n{output}"},
    ]
    try:
        response = await call_model(model, messages)
    except Exception as e:
        logger.warning(f"LLM judge call failed: {e}")
        return AssertionOutcome(type=AssertionType.llm.value, passed=False, reason=f"judge error: {e}")

    verdict = completion_text(response)
    return AssertionOutcome(type=AssertionType.llm.value, passed=_parse_verdict(verdict), reason=verdict.strip())


async def evaluate_assertion(assertion: Assertion, output: str, ideal_output: Optional[str] = None) -> AssertionOutcome:
    if assertion.type in DETERMINISTIC_CHECKS:
        return DETERMINISTIC_CHECKS[assertion.type](output, assertion.params)
    if assertion.type == AssertionType.equals_ideal.value:
        return check_equals_ideal(output, ideal_output)
    if assertion.type == AssertionType.llm.value:
        return await check_llm(output, assertion.params)
    return AssertionOutcome(type=assertion.type, passed=False, reason=f"unknown assertion type '{assertion.type}'")


async def evaluate_checklist(assertions: List[Assertion], output: str,
                             ideal_output: Optional[str] = None) -> List[AssertionOutcome]:
    return [await evaluate_assertion(a, output, ideal_output) for a in assertions]
