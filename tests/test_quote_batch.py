import io

from openpyxl import Workbook

from utils.core.errors import StorageError
from utils.db.quote_store import create_quote, get_quote, get_quote_items
from tools.quotes import quote_batch
from tools.quotes.quote_batch import analyze_batch

from conftest import FakeProvider, extraction, line


def _pending(supplier_name, text="Offerttext", **fields):
    return create_quote(
        {"supplier_name": supplier_name, "extracted_text": text, "category_id": "cat-1", **fields}
    )["id"]


ALFA = extraction(
    "Alfa VVS AB",
    [line("Radiator 22-500", 10, 1000, category="radiatorer"), line("Konsol", 20, 50, category="tillbehör")],
    total=11000,
    email="info@alfa.se",
)
GAMMA = extraction("Gamma Rör AB", [line("Radiator 22-600", 8, 1100, category="radiatorer")])


def test_partial_failure_is_isolated():
    ids = [_pending("Alfa VVS AB"), _pending("Beta AB"), _pending("Gamma Rör AB")]
    provider = FakeProvider(ALFA, "Tyvärr, offerten gick inte att tolka.", GAMMA)

    result = analyze_batch(ids, provider=provider)

    assert (result.success, result.failed) == (2, 1)
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Beta AB: ")
    assert result.message == "2 analyzed, 1 failed"

    first, second, third = (get_quote(i) for i in ids)
    assert first["status"] == "analyzed" and first["total_amount"] == 11000.0
    assert third["status"] == "analyzed" and third["total_amount"] == 8800.0
    assert second["status"] == "pending"


def test_analysis_fields_and_items_are_persisted():
    quote_id = _pending("uppladdad.pdf")
    analyze_batch([quote_id], provider=FakeProvider(ALFA))

    row = get_quote(quote_id)
    assert row["supplier_name"] == "Alfa VVS AB"
    assert row["ai_summary"] == "Alfa VVS AB - 2 artiklar"
    assert row["vat_included"] is False
    assert row["quote_date"] == "2024-03-01"
    assert row["payment_terms"] == "30 dagar netto"
    assert row["ai_analysis"]["totals"]["total"] == 11000.0
    assert row["supplier_id"]

    items = get_quote_items(quote_id)
    assert [i["description"] for i in items] == ["Radiator 22-500", "Konsol"]
    assert [i["sort_order"] for i in items] == [0, 1]
    assert items[1]["total"] == 1000.0
    assert items[0]["category"] == "radiatorer"


def test_reanalysis_replaces_items_and_is_idempotent():
    quote_id = _pending("Alfa VVS AB")
    analyze_batch([quote_id], provider=FakeProvider(ALFA))
    first_row = get_quote(quote_id)
    first_items = get_quote_items(quote_id)

    result = analyze_batch([quote_id], reanalyze=True, provider=FakeProvider(ALFA))
    assert result.success == 1

    second_row = get_quote(quote_id)
    second_items = get_quote_items(quote_id)
    assert len(second_items) == len(first_items) == 2

    def strip(rows, *keys):
        return [{k: v for k, v in r.items() if k not in keys} for r in rows]

    assert strip([second_row], "updated_at") == strip([first_row], "updated_at")
    assert strip(second_items, "id", "created_at") == strip(first_items, "id", "created_at")


def test_non_pending_quotes_are_skipped_without_reanalyze():
    quote_id = _pending("Alfa VVS AB", status="analyzed")
    provider = FakeProvider()

    result = analyze_batch([quote_id, "does-not-exist"], provider=provider)

    assert (result.success, result.failed, result.errors) == (0, 0, [])
    assert provider.prompts == []


def test_each_requested_id_is_processed_once():
    quote_id = _pending("Alfa VVS AB")
    provider = FakeProvider(ALFA)
    result = analyze_batch([quote_id, quote_id], provider=provider)
    assert result.success == 1
    assert len(provider.prompts) == 1


def _workbook_bytes():
    wb = Workbook()
    ws = wb.active
    ws.title = "Offert"
    ws.append(["Benämning", "Antal", "À-pris"])
    ws.append(["Radiator 22-600", 8, 1100])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_missing_text_is_recovered_from_the_stored_file(monkeypatch):
    quote_id = _pending("Gamma Rör AB", text=None, file_path="uploads/1-abc.xlsx", file_name="gamma.xlsx")
    monkeypatch.setattr(quote_batch, "download_bytes", lambda path: _workbook_bytes())
    provider = FakeProvider(GAMMA)

    result = analyze_batch([quote_id], provider=provider)

    assert result.success == 1
    assert "=== Offert ===" in get_quote(quote_id)["extracted_text"]
    assert "Radiator 22-600\t8\t1100" in provider.prompts[0]


def test_failed_recovery_is_reported_and_batch_continues(monkeypatch):
    broken = _pending("Gamma Rör AB", text=None, file_path="uploads/missing.pdf", file_name="gamma.pdf")
    fine = _pending("Alfa VVS AB")

    def missing(path):
        raise StorageError(f"File not found: {path}")

    monkeypatch.setattr(quote_batch, "download_bytes", missing)

    result = analyze_batch([broken, fine], provider=FakeProvider(ALFA))

    assert (result.success, result.failed) == (1, 1)
    assert result.errors == ["Gamma Rör AB: could not extract text"]


def test_quote_without_text_or_file_is_an_error():
    quote_id = _pending(None, text=None, file_name="tom.pdf")
    result = analyze_batch([quote_id], provider=FakeProvider())
    assert result.failed == 1
    assert result.errors[0].startswith("tom.pdf: ")
