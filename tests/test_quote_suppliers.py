from utils.db.quote_store import create_supplier, find_supplier_by_name
from tools.quotes import quote_suppliers
from tools.quotes.quote_models import ExtractedQuote
from tools.quotes.quote_suppliers import reconcile_supplier


def _extracted(**supplier):
    return ExtractedQuote.model_validate({"supplier": supplier})


def test_existing_fields_are_never_overwritten():
    create_supplier(
        {"name": "VVS Grossisten AB", "contact_email": "order@vvsgrossisten.se", "category_tags": ["radiatorer"]}
    )

    row = reconcile_supplier(
        _extracted(name="vvs grossisten ab", email="anna@vvsgrossisten.se", phone="08-123 45 67")
    )

    stored = find_supplier_by_name("VVS GROSSISTEN AB")
    assert row["id"] == stored["id"]
    assert stored["contact_email"] == "order@vvsgrossisten.se"
    assert stored["contact_phone"] == "08-123 45 67"
    assert stored["category_tags"] == ["radiatorer"]


def test_unknown_supplier_is_created_with_empty_tags():
    row = reconcile_supplier(
        _extracted(name="Rör & Värme AB", org_number="556000-0000", contact_person="Per", email="per@rv.se")
    )

    assert row["name"] == "Rör & Värme AB"
    assert row["category_tags"] == []
    assert row["contact_email"] == "per@rv.se"
    assert row["contact_person"] == "Per"
    assert find_supplier_by_name("rör & värme ab")["id"] == row["id"]


def test_same_name_is_created_once():
    first = reconcile_supplier(_extracted(name="Ventilab"))
    second = reconcile_supplier(_extracted(name="VENTILAB"))
    assert first["id"] == second["id"]


def test_missing_name_is_skipped():
    assert reconcile_supplier(_extracted(name="")) is None


def test_registry_failure_is_swallowed(monkeypatch):
    def broken(name):
        raise RuntimeError("database is down")

    monkeypatch.setattr(quote_suppliers, "find_supplier_by_name", broken)
    assert reconcile_supplier(_extracted(name="VVS AB")) is None
