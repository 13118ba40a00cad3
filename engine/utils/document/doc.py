import io
import os
import fitz
import threading
import pdfplumber
import pandas as pd
from typing import Callable, List, Optional, Tuple

from utils.core.log import get_logger
from utils.core.errors import UnsupportedFormat, ExtractionFailed

fitz.TOOLS.mupdf_display_errors(False)
fitz.TOOLS.mupdf_display_warnings(False)

"""
Document text extraction for supplier quotes.

Spreadsheets (.xlsx/.xlsm/.xls) are read with pandas, every sheet rendered as
a "=== <sheet> ===" header followed by tab separated rows.

PDFs go through a strategy ladder:
    1. pdfplumber text layer
    2. PyMuPDF text layer
    3. LLM vision OCR on the raw bytes (needs a provider)
The first output reaching MIN_USABLE_TEXT characters wins. If none does,
the longest non-empty output is returned instead of failing.

pip install pdfplumber pymupdf pandas openpyxl xlrd
"""

SPREADSHEET_EXTS = {".xlsx", ".xlsm", ".xls"}
PDF_EXTS = {".pdf"}
SUPPORTED_DOCS = SPREADSHEET_EXTS | PDF_EXTS

MIN_USABLE_TEXT = 50
OCR_MAX_TOKENS = 16_000

OCR_PROMPT = """Detta dokument är en leverantörsoffert som saknar textlager (skannad eller bild).
Läs av ALL text i dokumentet, sida för sida, i läsordning.
- Återge tabeller rad för rad med kolumnerna separerade av tabbtecken.
- Behåll siffror, artikelnummer, enheter och belopp exakt som de står.
- Hitta inte på något som inte syns i dokumentet.
Svara ENDAST med den utlästa texten, utan kommentarer."""

# Global lock: PyMuPDF is NOT thread-safe. Never call fitz.open / page.get_* from
# multiple threads in the same process without holding this.
_pymupdf_lock = threading.Lock()


def _clean_text(text: str) -> str:
    # NUL bytes are rejected by PostgreSQL text columns
    return (text or "").replace("\x00", "").replace("\r\n", "\n").strip()


def _cell_str(value) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, pd.Timestamp):
        return value.date().isoformat() if value == value.normalize() else value.isoformat()
    return str(value).strip()


def extract_text_from_spreadsheet(data: bytes) -> str:
    """Render every sheet as a delimited block of tab separated rows."""
    logger = get_logger()

    try:
        xls = pd.ExcelFile(io.BytesIO(data), engine="openpyxl")
    except Exception as e:
        # legacy .xls workbooks need xlrd, pandas picks it from the content
        logger.debug(f"ExcelFile(openpyxl) failed, retrying with default engine: {e}")
        xls = pd.ExcelFile(io.BytesIO(data))

    blocks = []
    for sheet in xls.sheet_names:
        df = xls.parse(sheet_name=sheet, header=None, dtype=object)
        lines = [f"=== {sheet} ==="]
        for row in df.itertuples(index=False, name=None):
            cells = [_cell_str(v) for v in row]
            # row positions match the sheet; an empty row stays as an empty line
            while cells and cells[-1] == "":
                cells.pop()
            lines.append("\t".join(cells))
        blocks.append("\n".join(lines))
        logger.debug(f"Sheet '{sheet}': {len(lines) - 1} rows")

    return _clean_text("\n\n".join(blocks))


def extract_pdf_text_pdfplumber(data: bytes) -> str:
    pages = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or "")
    return _clean_text("\n\n".join(pages))


def extract_pdf_text_pymupdf(data: bytes) -> str:
    pages = []
    with _pymupdf_lock:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            for page in doc:
                pages.append(page.get_text("text") or "")
        finally:
            doc.close()
    return _clean_text("\n\n".join(pages))


def extract_pdf_text_ocr(data: bytes, provider) -> str:
    text = provider.complete_with_document(
        data, "application/pdf", OCR_PROMPT, max_tokens=OCR_MAX_TOKENS, caller="pdf_ocr"
    )
    return _clean_text(text)


def extract_text_from_pdf(data: bytes, provider=None) -> str:
    """
    Run the PDF strategy ladder.

    Raises:
        ExtractionFailed: every strategy came back empty. ``reason`` is
        ``parse_error`` when every strategy crashed, else ``scanned``.
    """
    logger = get_logger()

    strategies: List[Tuple[str, Callable[[], str]]] = [
        ("pdfplumber", lambda: extract_pdf_text_pdfplumber(data)),
        ("pymupdf", lambda: extract_pdf_text_pymupdf(data)),
    ]
    if provider is not None:
        strategies.append(("llm_ocr", lambda: extract_pdf_text_ocr(data, provider)))
    else:
        logger.debug("No LLM provider given; OCR fallback disabled")

    outputs: List[Tuple[str, str]] = []
    errors = 0
    for name, run in strategies:
        try:
            text = run()
        except Exception as e:
            errors += 1
            logger.warning(f"PDF strategy '{name}' failed: {e}")
            continue

        if len(text) >= MIN_USABLE_TEXT:
            if name == "llm_ocr":
                logger.warning(f"Text layer missing; recovered {len(text)} chars via OCR")
            else:
                logger.debug(f"PDF strategy '{name}' yielded {len(text)} chars")
            return text
        logger.debug(f"PDF strategy '{name}' too short ({len(text)} chars)")
        if text:
            outputs.append((name, text))

    if outputs:
        name, best = max(outputs, key=lambda item: len(item[1]))
        logger.warning(
            f"No PDF strategy reached {MIN_USABLE_TEXT} chars; using '{name}' ({len(best)} chars)"
        )
        return best

    if errors == len(strategies):
        raise ExtractionFailed("The PDF could not be parsed", reason="parse_error")
    raise ExtractionFailed(
        "Scanned document with no recoverable text", reason="scanned"
    )


def extract_document_text(data: bytes, filename: str, *, provider=None) -> str:
    """
    Turn a PDF or spreadsheet into plain text.

    Args:
        data: raw file bytes
        filename: original name, only the extension is used
        provider: optional LLM provider enabling the OCR fallback for PDFs

    Raises:
        UnsupportedFormat: extension is not a spreadsheet or PDF
        ExtractionFailed: no usable text (reason: scanned, parse_error, empty)
    """
    logger = get_logger()
    ext = os.path.splitext(filename or "")[1].lower()

    if ext in SPREADSHEET_EXTS:
        try:
            text = extract_text_from_spreadsheet(data)
        except Exception as e:
            logger.error(f"Spreadsheet parse failed for {filename}: {e}")
            raise ExtractionFailed(
                f"The spreadsheet could not be parsed: {filename}", reason="parse_error"
            ) from e
        # a workbook with only headers still carries the sheet names
        if not any(
            line and not line.startswith("=== ") for line in text.splitlines()
        ):
            raise ExtractionFailed(f"The spreadsheet is empty: {filename}", reason="empty")
        return text

    if ext in PDF_EXTS:
        return extract_text_from_pdf(data, provider=provider)

    raise UnsupportedFormat(
        f"Unsupported file type '{ext or filename}'. Upload a PDF or Excel file."
    )


def main(*, scope_id: str = "system_check") -> bool:
    from openpyxl import Workbook
    from utils.core.log import scope_tool_logger, set_logger

    set_logger(scope_tool_logger(scope_id, "doc_test"))

    wb = Workbook()
    ws = wb.active
    ws.title = "Offert"
    ws.append(["Artikel", "Antal", "Pris"])
    ws.append(["Radiator 22-500-1000", 10, 1250.5])
    buf = io.BytesIO()
    wb.save(buf)
    sheet_text = extract_document_text(buf.getvalue(), "offert.xlsx")
    if "=== Offert ===" not in sheet_text or "Radiator 22-500-1000\t10\t1250.5" not in sheet_text:
        raise ValueError(f"Unexpected spreadsheet text: {sheet_text!r}")

    pdf = fitz.open()
    page = pdf.new_page()
    page.insert_text((72, 72), "Offert 1234 - Radiatorer och konvektorer, totalt 125 000 kr exkl moms")
    pdf_text = extract_document_text(pdf.tobytes(), "offert.pdf")
    pdf.close()
    if "Offert 1234" not in pdf_text:
        raise ValueError(f"Unexpected PDF text: {pdf_text!r}")

    print("DOC TEST OK")
    return True


if __name__ == "__main__":
    main()
