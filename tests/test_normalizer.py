"""Extraction strategies and validation policy for model output."""

from __future__ import annotations

import json

import pytest

from mcq_gateway.services.exceptions import MalformedGenerationOutput
from mcq_gateway.services.normalizer import (
    BareArrayPattern,
    DirectArray,
    FencedBlock,
    ResponseNormalizer,
    Unparseable,
    WrappedObject,
    extract,
)

ITEM = {"question": "Q", "options": ["A", "B", "C", "D"], "answer_index": 2}
RAW_ARRAY = json.dumps([ITEM])


def test_direct_array():
    mcqs = ResponseNormalizer().normalize(RAW_ARRAY)

    assert len(mcqs) == 1
    assert mcqs[0].answer_index == 2
    assert mcqs[0].options == ("A", "B", "C", "D")


def test_fenced_block_matches_direct_result():
    fenced = f"Here you go:\n```json\n{RAW_ARRAY}\n```\nGood luck!"

    assert ResponseNormalizer().normalize(fenced) == ResponseNormalizer().normalize(RAW_ARRAY)
    assert isinstance(extract(fenced), FencedBlock)


@pytest.mark.parametrize("key", ["mcqs", "questions", "items", "data", "results", "array"])
def test_known_wrapper_keys(key):
    result = extract(json.dumps({key: [ITEM]}))

    assert result == WrappedObject(key, [ITEM])


def test_first_list_property_is_used_for_unknown_wrapper():
    result = extract(json.dumps({"meta": {"n": 1}, "quiz": [ITEM]}))

    assert result == WrappedObject("quiz", [ITEM])


def test_bare_array_inside_prose():
    raw = f"Sure! {RAW_ARRAY} Let me know if you need more."

    assert isinstance(extract(raw), BareArrayPattern)
    assert ResponseNormalizer().normalize(raw)[0].question == "Q"


def test_strategy_order_prefers_direct_parse():
    assert isinstance(extract(RAW_ARRAY), DirectArray)


@pytest.mark.parametrize("raw", ["", "I cannot help with that.", "{not json", '{"count": 3}'])
def test_garbage_is_malformed(raw):
    assert isinstance(extract(raw), Unparseable)
    with pytest.raises(MalformedGenerationOutput):
        ResponseNormalizer().normalize(raw)


def test_permissive_mode_drops_invalid_items():
    items = [
        ITEM,
        {"question": "three options", "options": ["A", "B", "C"], "answer_index": 0},
        {"question": "bad index", "options": ["A", "B", "C", "D"], "answer_index": 4},
        {"question": "   ", "options": ["A", "B", "C", "D"], "answer_index": 0},
        "not an object",
    ]

    mcqs = ResponseNormalizer().normalize(json.dumps(items))

    assert [mcq.question for mcq in mcqs] == ["Q"]


def test_strict_mode_rejects_the_batch():
    items = [ITEM, {"question": "bad", "options": ["A", "B", "C", "D"], "answer_index": -1}]

    with pytest.raises(MalformedGenerationOutput):
        ResponseNormalizer(strict=True).normalize(json.dumps(items))


def test_all_items_invalid_is_malformed():
    with pytest.raises(MalformedGenerationOutput):
        ResponseNormalizer().normalize(json.dumps([{"question": "only"}]))


def test_empty_array_is_malformed():
    with pytest.raises(MalformedGenerationOutput):
        ResponseNormalizer().normalize("[]")
