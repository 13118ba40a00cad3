import pytest

from utils.core.errors import ComparisonFailed
from utils.db.quote_store import create_quote, replace_quote_items
from tools.quotes.quote_compare import (
    analyze_scope,
    build_comparison_input,
    compare_quotes,
    enforce_ranking,
)
from tools.quotes.quote_models import ComparisonResult

from conftest import FakeProvider, extraction, line


def _input(name, items, total):
    return {"supplier_name": name, "ai_analysis": extraction(name, items, total=total)}


# A covers {X, Y}, B covers {X}, C covers {X, Z}
QUOTES = [
    _input("A", [line("Radiator", 10, 80, category="Radiatorer"), line("Konvektor", 4, 50, category="konvektorer")], 1000),
    _input("B", [line("Radiator", 10, 85, category="radiatorer")], 850),
    _input("C", [line("Radiator", 10, 70, category="radiatorer"), line("Pump", 2, 200, category="pumpar")], 1100),
]

LLM_COMPARISON = {
    "summary": "Tre offerter med olika omfattning.",
    "recommendation": {"recommended_supplier": "C", "reasoning": "Lägst justerat pris"},
    "specification_compliance": {"per_supplier": [{"supplier": "A", "compliance_score": 80}]},
}


def test_scope_analysis_finds_common_categories_and_adjusts():
    scope = analyze_scope(QUOTES)

    assert scope["categories_found"] == ["konvektorer", "pumpar", "radiatorer"]
    assert scope["common_categories"] == ["radiatorer"]
    assert scope["scopes_differ"] is True

    by_supplier = {e["supplier"]: e for e in scope["per_supplier"]}
    assert by_supplier["A"]["extra_categories"] == ["konvektorer"]
    assert by_supplier["A"]["extra_value"] == 200.0
    assert by_supplier["A"]["raw_total"] == 1000.0
    assert by_supplier["A"]["adjusted_total"] == 800.0
    assert by_supplier["B"]["adjusted_total"] == 850.0
    assert by_supplier["B"]["missing_categories"] == ["konvektorer", "pumpar"]
    assert by_supplier["C"]["extra_categories"] == ["pumpar"]
    assert by_supplier["C"]["adjusted_total"] == 700.0


def test_uncategorized_quote_does_not_invent_scope_differences():
    scope = analyze_scope(
        [
            _input("A", [line("Radiator", 10, 100, category="radiatorer")], 1000),
            _input("B", [line("Radiator", 10, 90, type="product")], 900),
        ]
    )

    assert scope["common_categories"] == ["radiatorer"]
    assert scope["scopes_differ"] is False
    by_supplier = {e["supplier"]: e for e in scope["per_supplier"]}
    assert by_supplier["A"]["adjusted_total"] == 1000.0
    assert by_supplier["B"]["category_values"] == {"övrigt": 900.0}
    assert by_supplier["B"]["extra_categories"] == []
    assert by_supplier["B"]["missing_categories"] == []
    assert by_supplier["B"]["adjusted_total"] == 900.0


def test_ranking_orders_by_adjusted_not_raw_total():
    provider = FakeProvider(LLM_COMPARISON)
    result = compare_quotes("Kv. Eken", "Radiatorer", QUOTES, provider=provider)

    ranking = result.price_comparison.ranking
    assert [e.supplier for e in ranking] == ["C", "A", "B"]
    assert [e.raw_total for e in ranking] == [1100.0, 1000.0, 850.0]
    assert [e.adjusted_total for e in ranking] == [700.0, 800.0, 850.0]
    assert [e.difference_from_lowest for e in ranking] == [0.0, 100.0, 150.0]
    assert [e.percent_difference for e in ranking] == [0.0, 14.3, 21.4]

    assert result.scope_analysis.common_categories == ["radiatorer"]
    assert "olika omfattning" in result.scope_analysis.warning


def test_llm_ranking_is_resorted_and_raw_totals_filled():
    response = dict(
        LLM_COMPARISON,
        scope_analysis={"categories_found": ["radiatorer"], "common_categories": ["radiatorer"]},
        price_comparison={
            "ranking": [
                {"supplier": "B", "adjusted_total": 850, "difference_from_lowest": 0},
                {"supplier": "A", "raw_total": 1000, "adjusted_total": 800},
                {"supplier": "C", "adjusted_total": 700},
            ]
        },
    )
    result = compare_quotes("Kv. Eken", "Radiatorer", QUOTES, provider=FakeProvider(response))

    ranking = result.price_comparison.ranking
    assert [e.supplier for e in ranking] == ["C", "A", "B"]
    assert ranking[0].raw_total == 1100.0
    assert ranking[2].difference_from_lowest == 150.0
    # the LLM's own scope report is kept, but gets the missing warning
    assert result.scope_analysis.warning


def test_prompt_carries_the_scope_pre_analysis():
    provider = FakeProvider(LLM_COMPARISON)
    compare_quotes("Kv. Eken", "Radiatorer", QUOTES, "Radiatorer typ 22", provider=provider)

    prompt = provider.prompts[0]
    assert "FÖRBERÄKNAD OMFATTNINGSANALYS" in prompt
    assert '"common_categories": [\n    "radiatorer"\n  ]' in prompt
    assert "Radiatorer typ 22" in prompt
    assert provider.callers == ["compare_quotes"]


def test_compliance_is_dropped_without_specification():
    result = compare_quotes("Kv. Eken", "Radiatorer", QUOTES, provider=FakeProvider(LLM_COMPARISON))
    assert result.specification_compliance.per_supplier == []

    result = compare_quotes(
        "Kv. Eken", "Radiatorer", QUOTES, "Krav: typ 22", provider=FakeProvider(LLM_COMPARISON)
    )
    assert result.specification_compliance.per_supplier[0].compliance_score == 80.0


def test_fewer_than_two_quotes_is_a_client_error():
    provider = FakeProvider()
    with pytest.raises(ComparisonFailed) as exc:
        compare_quotes("P", "K", QUOTES[:1], provider=provider)
    assert exc.value.http_status == 400
    assert provider.prompts == []


def test_unparseable_comparison_raises():
    with pytest.raises(ComparisonFailed) as exc:
        compare_quotes("P", "K", QUOTES, provider=FakeProvider("Ingen jämförelse möjlig."))
    assert exc.value.http_status == 502
    assert exc.value.raw_excerpt == "Ingen jämförelse möjlig."


def test_legacy_ranking_falls_back_to_single_total():
    result = ComparisonResult.model_validate(
        {
            "price_comparison": {
                "ranking": [
                    {"supplier": "X", "total": 500},
                    {"supplier": "Utan pris"},
                    {"supplier": "Y", "raw_total": 450},
                    {"supplier": "Z", "total": 999, "adjusted_total": 400},
                ]
            }
        }
    )
    enforce_ranking(result)

    ranking = result.price_comparison.ranking
    assert [e.supplier for e in ranking] == ["Z", "Y", "X", "Utan pris"]
    assert [e.difference_from_lowest for e in ranking] == [0.0, 50.0, 100.0, None]
    assert ranking[-1].percent_difference is None


def test_stored_quotes_without_analysis_use_their_columns():
    with_analysis = create_quote(
        {"supplier_name": "A", "ai_analysis": extraction("A", [], total=100), "status": "analyzed"}
    )
    legacy = create_quote(
        {"supplier_name": "B", "total_amount": 900, "payment_terms": "60 dagar", "status": "analyzed"}
    )
    replace_quote_items(
        legacy["id"],
        [{"description": "Radiator", "quantity": 9, "unit_price": 100, "total": 900, "item_type": "product", "category": "radiatorer"}],
    )

    payload = build_comparison_input([with_analysis, legacy])

    assert payload[0]["ai_analysis"]["totals"]["total"] == 100
    assert payload[1]["supplier_name"] == "B"
    assert payload[1]["ai_analysis"]["total"] == 900.0
    assert payload[1]["ai_analysis"]["items"][0]["category"] == "radiatorer"
    assert payload[1]["ai_analysis"]["terms"]["payment"] == "60 dagar"
