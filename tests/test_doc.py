import io

import pytest
from openpyxl import Workbook

from utils.core.errors import ExtractionFailed, UnsupportedFormat
from utils.document import doc
from utils.document.doc import extract_document_text

from conftest import FakeProvider

LONG_TEXT = "Offert 2024-118 Radiator typ 22 500x1000, 10 st, à-pris 1 250 kr exkl. moms"


def _xlsx(sheets):
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_unsupported_extension():
    with pytest.raises(UnsupportedFormat):
        extract_document_text(b"PK...", "offert.docx")


def test_spreadsheet_sheets_are_delimited_and_tab_separated():
    data = _xlsx(
        {
            "Radiatorer": [["Art", "Antal", "Pris"], ["R22", None, 1250.5], [None, None, None], ["R33", 4, 2000]],
            "Villkor": [["Betalning", "30 dagar"]],
        }
    )

    text = extract_document_text(data, "OFFERT.XLSX")

    assert text == (
        "=== Radiatorer ===\nArt\tAntal\tPris\nR22\t\t1250.5\n\nR33\t4\t2000"
        "\n\n=== Villkor ===\nBetalning\t30 dagar"
    )


def test_spreadsheet_without_rows_is_empty():
    with pytest.raises(ExtractionFailed) as exc:
        extract_document_text(_xlsx({"Blad1": []}), "tom.xlsx")
    assert exc.value.reason == "empty"


def test_corrupt_spreadsheet_is_a_parse_error():
    with pytest.raises(ExtractionFailed) as exc:
        extract_document_text(b"not a workbook", "trasig.xlsx")
    assert exc.value.reason == "parse_error"


def _ladder(monkeypatch, plumber, mupdf):
    def run(value):
        def strategy(data):
            if isinstance(value, Exception):
                raise value
            return value

        return strategy

    monkeypatch.setattr(doc, "extract_pdf_text_pdfplumber", run(plumber))
    monkeypatch.setattr(doc, "extract_pdf_text_pymupdf", run(mupdf))


def test_pdf_first_usable_strategy_wins(monkeypatch):
    _ladder(monkeypatch, "kort", LONG_TEXT)
    assert extract_document_text(b"%PDF", "offert.pdf") == LONG_TEXT


def test_pdf_ocr_fallback_uses_the_provider(monkeypatch):
    _ladder(monkeypatch, "", "")
    provider = FakeProvider(LONG_TEXT)

    assert extract_document_text(b"%PDF-1.7", "skannad.pdf", provider=provider) == LONG_TEXT
    assert provider.documents == [(b"%PDF-1.7", "application/pdf")]


def test_pdf_longest_short_result_beats_failure(monkeypatch):
    _ladder(monkeypatch, "Sida 1", "Sida 1 av 1, offert")
    assert extract_document_text(b"%PDF", "offert.pdf") == "Sida 1 av 1, offert"


def test_pdf_without_any_text_is_scanned(monkeypatch):
    _ladder(monkeypatch, "", "")
    with pytest.raises(ExtractionFailed) as exc:
        extract_document_text(b"%PDF", "skannad.pdf")
    assert exc.value.reason == "scanned"


def test_pdf_where_every_strategy_crashes_is_a_parse_error(monkeypatch):
    _ladder(monkeypatch, ValueError("bad xref"), RuntimeError("cannot open"))
    with pytest.raises(ExtractionFailed) as exc:
        extract_document_text(b"garbage", "trasig.pdf")
    assert exc.value.reason == "parse_error"


def test_real_pdf_text_layer():
    fitz = pytest.importorskip("fitz")
    pdf = fitz.open()
    page = pdf.new_page()
    page.insert_text((72, 72), LONG_TEXT)
    data = pdf.tobytes()
    pdf.close()

    assert "Radiator typ 22" in extract_document_text(data, "offert.pdf")
