"""Turn semi-structured model output into validated MCQ records.

Extraction runs an explicit, ordered list of strategies and stops at the first
one that yields a list of candidate objects:

1. ``DirectArray`` / ``WrappedObject``: the whole payload is JSON.
2. ``FencedBlock``: JSON inside a markdown code fence.
3. ``BareArrayPattern``: the first ``[{...}]`` span in free text.

If none match the result is ``Unparseable``. Candidates are then validated
against the MCQ model; invalid entries are dropped, or fail the batch when
strict validation is enabled.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence, Union

from pydantic import ValidationError

from mcq_gateway.domain.models import MCQ
from mcq_gateway.logging import logger
from mcq_gateway.services.exceptions import MalformedGenerationOutput

WRAPPER_KEYS: tuple[str, ...] = ("mcqs", "questions", "items", "data", "results", "array")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_BARE_ARRAY_RE = re.compile(r"\[\s*\{[\s\S]*\}\s*\]")


@dataclass(frozen=True, slots=True)
class DirectArray:
    items: list[Any]


@dataclass(frozen=True, slots=True)
class WrappedObject:
    key: str
    items: list[Any]


@dataclass(frozen=True, slots=True)
class FencedBlock:
    items: list[Any]


@dataclass(frozen=True, slots=True)
class BareArrayPattern:
    items: list[Any]


@dataclass(frozen=True, slots=True)
class Unparseable:
    raw: str


ParseResult = Union[DirectArray, WrappedObject, FencedBlock, BareArrayPattern, Unparseable]
Extracted = Union[DirectArray, WrappedObject, FencedBlock, BareArrayPattern]


def _unwrap(value: Any) -> tuple[str | None, list[Any]] | None:
    """Return ``(wrapper_key, items)`` for an array or a wrapper object."""

    if isinstance(value, list):
        return None, value
    if isinstance(value, dict):
        for key in WRAPPER_KEYS:
            if isinstance(value.get(key), list):
                return key, value[key]
        for key, candidate in value.items():
            if isinstance(candidate, list):
                return key, candidate
    return None


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, TypeError):
        return None


def parse_direct(raw: str) -> Extracted | None:
    unwrapped = _unwrap(_loads(raw.strip()))
    if unwrapped is None:
        return None
    key, items = unwrapped
    if key is None:
        return DirectArray(items)
    return WrappedObject(key, items)


def parse_fenced(raw: str) -> Extracted | None:
    for match in _FENCE_RE.finditer(raw):
        unwrapped = _unwrap(_loads(match.group(1)))
        if unwrapped is not None:
            return FencedBlock(unwrapped[1])
    return None


def parse_bare_array(raw: str) -> Extracted | None:
    match = _BARE_ARRAY_RE.search(raw)
    if match is None:
        return None
    value = _loads(match.group(0))
    if isinstance(value, list):
        return BareArrayPattern(value)
    return None


STRATEGIES: tuple[Callable[[str], Extracted | None], ...] = (
    parse_direct,
    parse_fenced,
    parse_bare_array,
)


def extract(raw: str) -> ParseResult:
    for strategy in STRATEGIES:
        result = strategy(raw)
        if result is not None:
            return result
    return Unparseable(raw)


class ResponseNormalizer:
    def __init__(self, strict: bool = False) -> None:
        self.strict = strict

    def normalize(self, raw: str) -> list[MCQ]:
        result = extract(raw or "")
        if isinstance(result, Unparseable):
            raise MalformedGenerationOutput(
                "Model did not return valid JSON", raw_response=result.raw
            )

        mcqs = self._validate(result.items, raw)
        logger.info(
            "generation_normalized",
            strategy=type(result).__name__,
            wrapper_key=getattr(result, "key", None),
            candidates=len(result.items),
            accepted=len(mcqs),
        )
        if not mcqs:
            raise MalformedGenerationOutput(
                "Model output contained no valid questions", raw_response=raw
            )
        return mcqs

    def _validate(self, items: Sequence[Any], raw: str) -> list[MCQ]:
        accepted: list[MCQ] = []
        for index, item in enumerate(items):
            try:
                accepted.append(MCQ.model_validate(item))
            except ValidationError as exc:
                if self.strict:
                    raise MalformedGenerationOutput(
                        f"Question {index} failed validation: {exc.errors()[0]['msg']}",
                        raw_response=raw,
                    ) from exc
                logger.info("mcq_dropped", index=index, reason=exc.errors()[0]["msg"])
        return accepted


__all__ = [
    "BareArrayPattern",
    "DirectArray",
    "FencedBlock",
    "ParseResult",
    "ResponseNormalizer",
    "STRATEGIES",
    "Unparseable",
    "WRAPPER_KEYS",
    "WrappedObject",
    "extract",
]
