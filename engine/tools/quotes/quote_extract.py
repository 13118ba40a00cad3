"""
LLM-based quote normalization.

Turns the plain text of a supplier quote into a validated ExtractedQuote:

1. ask the LLM for the extraction JSON (prompts_quotes.get_extraction_prompt)
2. parse the response with the JSON repair ladder (utils.core.jsonval)
3. validate/coerce into ExtractedQuote (lenient pydantic models)
4. enforce net-of-VAT totals, since the prompt alone does not guarantee it
5. derive totals.total from the line items when it is missing or zero

Usage:
    from utils.llm.LLM import get_provider
    from tools.quotes.quote_extract import normalize_quote_text

    quote = normalize_quote_text(text, provider=get_provider())
"""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from utils.vault import secrets
from utils.core.log import get_logger
from utils.core.errors import AnalysisFailed, describe_error
from utils.core.jsonval import parse_llm_json, JSONRepairError
from utils.llm.LLM import BaseLLMProvider
from tools.quotes.quote_models import ExtractedQuote
from tools.quotes.prompts_quotes import get_extraction_prompt


DEFAULT_VAT_RATE = 0.25
MAX_QUOTE_CHARS = 400_000


def _sanitize_quote_text(text: str, max_chars: int = MAX_QUOTE_CHARS) -> str:
    """Normalize quote text for extraction: BOM, line endings, length cap."""
    if not text:
        return ""
    s = text.replace("\r\n", "\n").replace("\r", "\n")
    if s.startswith("\ufeff"):
        s = s[1:]
    s = s.strip()
    if max_chars > 0 and len(s) > max_chars:
        s = s[:max_chars] + "\n\n[... truncated for extraction ...]"
    return s


def _tolerance(total: float) -> float:
    return max(1.0, abs(total) * 0.005)


def _close(a: float, b: float, total: float) -> bool:
    return abs(a - b) <= _tolerance(total)


def enforce_net_of_vat(quote: ExtractedQuote, vat_rate: Optional[float] = None) -> Optional[str]:
    """
    Make ``totals.total`` the amount excluding VAT.

    Returns the name of the rule that changed the total, or None. Rules are
    tried in order; the first match wins:

    - incl_vat: total equals the stated gross total, so subtract the VAT
    - subtotal: subtotal + VAT equals total, so the subtotal is the net figure
    - items: line items + VAT equal total, so subtract the VAT
    - rate: VAT is exactly the configured rate's share of total

    Without a stated VAT amount, a gross total above the subtotal implies
    VAT = gross - subtotal; only the incl_vat rule uses that derived figure.
    """
    logger = get_logger()
    totals = quote.totals
    vat = totals.vat or 0.0
    total = totals.total
    rate = DEFAULT_VAT_RATE if vat_rate is None else vat_rate

    rule = None
    new_total = None
    gross = totals.total_incl_vat

    derived_vat = False
    if vat <= 0 and gross and totals.subtotal and totals.subtotal < gross:
        vat, derived_vat = gross - totals.subtotal, True

    if gross and vat > 0 and (total is None or _close(total, gross, gross)):
        rule, new_total = "incl_vat", gross - vat
    elif total and vat > 0 and not derived_vat:
        if totals.subtotal and _close(totals.subtotal + vat, total, total):
            rule, new_total = "subtotal", totals.subtotal
        else:
            items_total = quote.items_total()
            if items_total > 0 and _close(items_total + vat, total, total):
                rule, new_total = "items", total - vat
            elif rate > 0 and _close(vat, total * rate / (1 + rate), total):
                rule, new_total = "rate", total - vat

    if rule is None:
        return None

    new_total = round(new_total, 2)
    if total is not None and _close(new_total, total, total):
        return None
    logger.warning(
        f"Net-of-VAT repair ({rule}) for '{quote.supplier.name or 'unknown'}': "
        f"total {total} -> {new_total} (vat={vat})"
    )
    totals.total = new_total
    return rule


def derive_total(quote: ExtractedQuote) -> bool:
    """
    Fill a missing or zero ``totals.total`` from the line items.

    Each line counts its own total, else quantity * unit_price. A non-zero
    extracted total is never overwritten. Returns True when derived.
    """
    if quote.totals.total:
        return False
    quote.totals.total = round(quote.items_total(), 2)
    get_logger().debug(
        f"Derived total {quote.totals.total} from {len(quote.items)} line item(s)"
    )
    return True


def normalize_quote_text(
    raw_text: str,
    *,
    provider: BaseLLMProvider,
    vat_rate: Optional[float] = None,
) -> ExtractedQuote:
    """
    Normalize extracted document text into an ExtractedQuote.

    Raises:
        AnalysisFailed: empty input, LLM failure, or output that survives no
        stage of the repair ladder (``raw_excerpt`` keeps 500 characters).
    """
    logger = get_logger()
    text = _sanitize_quote_text(raw_text)
    if not text:
        raise AnalysisFailed("No quote text to analyze")

    if vat_rate is None:
        vat_rate = secrets.get_float("vat_rate", DEFAULT_VAT_RATE)

    prompt = get_extraction_prompt(text)
    try:
        response = provider.complete(prompt, caller="normalize_quote")
    except Exception as e:
        logger.error(f"Quote extraction LLM call failed: {e}")
        raise AnalysisFailed(f"AI analysis failed: {describe_error(e)}") from e

    try:
        data = parse_llm_json(response, label="quote_extract")
    except JSONRepairError as e:
        raise AnalysisFailed(
            "Could not parse the AI response as JSON", raw_excerpt=e.excerpt
        ) from e

    try:
        quote = ExtractedQuote.model_validate(data)
    except ValidationError as e:
        logger.error(f"Quote JSON failed validation: {e}")
        raise AnalysisFailed(
            f"AI response does not match the quote format ({e.error_count()} error(s))",
            raw_excerpt=str(response)[:500],
        ) from e

    enforce_net_of_vat(quote, vat_rate)
    derive_total(quote)

    logger.debug(
        f"Normalized quote from '{quote.supplier.name or 'unknown'}': "
        f"{len(quote.items)} item(s), total={quote.totals.total}"
    )
    return quote


def main() -> bool:
    from utils.llm.LLM import get_provider
    from utils.core.log import scope_tool_logger, set_logger

    set_logger(scope_tool_logger("system_check", "quote_extract_test"))

    sample = """VVS Grossisten AB, org.nr 556000-0000
Offert 2024-118, datum 2024-03-01, giltig till 2024-04-01
Kontakt: Anna Svensson, anna@vvsgrossisten.se, 08-123 45 67

Pos  Art.nr    Benämning                       Antal  À-pris   Summa
1    R22-510   Radiator typ 22 500x1000        10 st  1 250,00 12 500,00
2    TV-15     Termostatventil DN15            10 st    210,00  2 100,00

Summa exkl. moms 14 600,00   Moms 3 650,00   Att betala 18 250,00
Betalningsvillkor 30 dagar netto. Leverans fritt byggarbetsplats."""

    quote = normalize_quote_text(sample, provider=get_provider())
    if not quote.items or not quote.totals.total:
        raise ValueError("Extraction returned no items or total")
    if abs(quote.totals.total - 14600.0) > 1.0:
        raise ValueError(f"Expected net total 14600, got {quote.totals.total}")
    print("QUOTE EXTRACT TEST OK")
    return True


if __name__ == "__main__":
    main()
