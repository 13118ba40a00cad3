import pytest

from utils.core.jsonval import (
    JSONRepairError,
    clean_malformed_json,
    extract_balanced_object,
    parse_llm_json,
)


def test_bare_json_parses_directly():
    assert parse_llm_json('{"a": 1, "b": [1, 2]}') == {"a": 1, "b": [1, 2]}


def test_fenced_block_matches_bare_json():
    bare = '{"supplier": {"name": "VVS AB"}, "items": []}'
    fenced = f"Här är resultatet:\n```json\n{bare}\n```\nHoppas det hjälper."
    assert parse_llm_json(fenced) == parse_llm_json(bare)


def test_fence_without_language_tag():
    assert parse_llm_json('```\n{"ok": true}\n```') == {"ok": True}


def test_balanced_object_inside_prose():
    raw = 'Svar: {"note": "pris {ca} 100", "n": 2} och lite mer text {inte json}'
    assert parse_llm_json(raw) == {"note": "pris {ca} 100", "n": 2}


def test_trailing_commas_are_scrubbed():
    assert parse_llm_json('{"items": [1, 2,], "x": 1,}') == {"items": [1, 2], "x": 1}


def test_single_object_list_is_unwrapped():
    assert parse_llm_json('[{"a": 1}]') == {"a": 1}


def test_failure_keeps_first_500_chars():
    raw = "x" * 800
    with pytest.raises(JSONRepairError) as exc:
        parse_llm_json(raw)
    assert exc.value.excerpt == "x" * 500


def test_empty_response_fails():
    with pytest.raises(JSONRepairError):
        parse_llm_json("   ")


def test_balanced_object_ignores_braces_in_strings():
    assert extract_balanced_object('pre {"a": "}"} post') == '{"a": "}"}'
    assert extract_balanced_object("no object here") is None


def test_clean_malformed_json_is_idempotent():
    raw = '{"a": [1,],}'
    once = clean_malformed_json(raw)
    assert clean_malformed_json(once) == once
