import json

import pytest

from utils.core.errors import AnalysisFailed
from tools.quotes.quote_extract import derive_total, enforce_net_of_vat, normalize_quote_text
from tools.quotes.quote_models import ExtractedQuote

from conftest import FakeProvider, extraction, line

QUOTE_TEXT = "Offert från VVS Grossisten AB\nRadiator 10 st à 1 250 kr\nTermostatventil 10 st à 210 kr"


def _quote(**totals):
    return ExtractedQuote.model_validate({"supplier": {"name": "VVS AB"}, "totals": totals})


def test_total_derived_from_items_when_missing():
    provider = FakeProvider(
        extraction(
            "VVS AB",
            [line("Radiator", 10, 100), line("Montage", None, None, total=500, type="service")],
            total=0,
        )
    )
    quote = normalize_quote_text(QUOTE_TEXT, provider=provider, vat_rate=0.25)
    assert quote.totals.total == 1500.0


def test_extracted_total_is_not_overwritten():
    provider = FakeProvider(extraction("VVS AB", [line("Radiator", 10, 150)], total=1200))
    quote = normalize_quote_text(QUOTE_TEXT, provider=provider, vat_rate=0.25)
    assert quote.totals.total == 1200.0


def test_total_is_always_present():
    provider = FakeProvider(extraction("VVS AB", []))
    quote = normalize_quote_text(QUOTE_TEXT, provider=provider, vat_rate=0.25)
    assert quote.totals.total == 0.0


def test_gross_total_is_replaced_by_net():
    provider = FakeProvider(
        extraction("VVS AB", [line("Radiator", 10, 100)], total=1250, vat=250, total_incl_vat=1250)
    )
    quote = normalize_quote_text(QUOTE_TEXT, provider=provider, vat_rate=0.25)
    assert quote.totals.total == 1000.0


@pytest.mark.parametrize(
    "totals, items, rule",
    [
        ({"total": 1250, "vat": 250, "total_incl_vat": 1250}, [], "incl_vat"),
        ({"total": None, "vat": 250, "total_incl_vat": 1250}, [], "incl_vat"),
        ({"total": 1250, "subtotal": 1000, "total_incl_vat": 1250}, [], "incl_vat"),
        ({"total": None, "subtotal": 1000, "total_incl_vat": 1250}, [], "incl_vat"),
        ({"total": 1250, "vat": 250, "subtotal": 1000}, [], "subtotal"),
        ({"total": 1250, "vat": 250}, [line("Radiator", 10, 100)], "items"),
        ({"total": 1250, "vat": 250}, [], "rate"),
    ],
)
def test_net_of_vat_rules(totals, items, rule):
    quote = ExtractedQuote.model_validate({"items": items, "totals": totals})
    assert enforce_net_of_vat(quote, 0.25) == rule
    assert quote.totals.total == 1000.0


def test_net_total_is_left_alone():
    quote = _quote(total=1000, vat=250, total_incl_vat=1250)
    assert enforce_net_of_vat(quote, 0.25) is None
    assert quote.totals.total == 1000.0


def test_gross_total_without_vat_amount_becomes_subtotal():
    provider = FakeProvider(
        extraction("VVS AB", [], total=1250, subtotal=1000, total_incl_vat=1250)
    )
    quote = normalize_quote_text(QUOTE_TEXT, provider=provider, vat_rate=0.25)
    assert quote.totals.total == 1000.0


def test_net_total_with_subtotal_and_gross_is_left_alone():
    quote = ExtractedQuote.model_validate(
        {"items": [line("Radiator", 10, 75)], "totals": {"total": 1000, "subtotal": 1000, "total_incl_vat": 1250}}
    )
    assert enforce_net_of_vat(quote, 0.25) is None
    assert quote.totals.total == 1000.0


def test_no_vat_means_no_repair():
    quote = _quote(total=1250)
    assert enforce_net_of_vat(quote, 0.25) is None
    assert quote.totals.total == 1250.0


def test_derive_total_only_fills_missing_or_zero():
    quote = ExtractedQuote.model_validate(
        {"items": [line("A", 2, 50)], "totals": {"total": 0}}
    )
    assert derive_total(quote) is True
    assert quote.totals.total == 100.0
    assert derive_total(quote) is False


def test_fenced_response_equals_bare_response():
    payload = extraction("VVS AB", [line("Radiator", 10, 100, category="radiatorer")], total=1000)
    bare = normalize_quote_text(QUOTE_TEXT, provider=FakeProvider(payload), vat_rate=0.25)
    fenced_text = "```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```"
    fenced = normalize_quote_text(QUOTE_TEXT, provider=FakeProvider(fenced_text), vat_rate=0.25)
    assert fenced.model_dump() == bare.model_dump()


def test_unparseable_response_raises_with_excerpt():
    raw = "Jag kunde tyvärr inte läsa offerten. " * 30
    with pytest.raises(AnalysisFailed) as exc:
        normalize_quote_text(QUOTE_TEXT, provider=FakeProvider(raw), vat_rate=0.25)
    assert exc.value.raw_excerpt == raw.strip()[:500]
    assert exc.value.http_status == 502


def test_llm_error_becomes_analysis_failed():
    with pytest.raises(AnalysisFailed) as exc:
        normalize_quote_text(QUOTE_TEXT, provider=FakeProvider(RuntimeError("boom")), vat_rate=0.25)
    assert "boom" in exc.value.message


def test_empty_text_is_rejected_without_llm_call():
    provider = FakeProvider()
    with pytest.raises(AnalysisFailed):
        normalize_quote_text("  \n ", provider=provider)
    assert provider.prompts == []


def test_prompt_carries_quote_text_and_net_rule():
    provider = FakeProvider(extraction("VVS AB", [], total=10))
    normalize_quote_text(QUOTE_TEXT, provider=provider, vat_rate=0.25)
    assert QUOTE_TEXT in provider.prompts[0]
    assert "EXKLUSIVE MOMS" in provider.prompts[0]
    assert provider.callers == ["normalize_quote"]
