from datetime import datetime, UTC


class QuoteToolError(Exception):
    """Base for errors surfaced to callers of the quote tools."""

    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedFormat(QuoteToolError):
    """File extension is neither a spreadsheet nor a PDF."""

    http_status = 400


class ExtractionFailed(QuoteToolError):
    """No usable text could be recovered from a document.

    ``reason`` is one of ``scanned``, ``parse_error`` or ``empty``.
    """

    http_status = 422

    def __init__(self, message: str, reason: str = "parse_error"):
        super().__init__(message)
        self.reason = reason


class AnalysisFailed(QuoteToolError):
    """LLM output for a quote could not be coerced into the quote schema."""

    http_status = 502

    def __init__(self, message: str, raw_excerpt: str = ""):
        super().__init__(message)
        self.raw_excerpt = raw_excerpt


class ComparisonFailed(QuoteToolError):
    http_status = 502

    def __init__(self, message: str, raw_excerpt: str = "", http_status: int | None = None):
        super().__init__(message)
        self.raw_excerpt = raw_excerpt
        if http_status is not None:
            self.http_status = http_status


class StorageError(QuoteToolError):
    http_status = 502


class NotFound(QuoteToolError):
    """A referenced category or quote does not exist."""

    http_status = 404


def describe_error(exc: BaseException) -> str:
    """Human readable reason for *exc*, used for per-quote batch errors."""
    msg = getattr(exc, "message", None)
    if isinstance(msg, str) and msg.strip():
        return msg.strip()

    # psycopg2 errors keep the server message in pgerror / diag
    pgerror = getattr(exc, "pgerror", None)
    if isinstance(pgerror, str) and pgerror.strip():
        return pgerror.strip()
    diag = getattr(exc, "diag", None)
    primary = getattr(diag, "message_primary", None) if diag is not None else None
    if isinstance(primary, str) and primary.strip():
        return primary.strip()

    text = str(exc).strip()
    if text:
        return text
    return "unknown error"


def make_error_payload(
    stage: str, err: Exception | str, extra: dict | None = None
) -> dict:
    msg = err.message if isinstance(err, QuoteToolError) else str(err)
    base = {
        "status": "error",
        "error": msg,
        "stage": stage,
        "timestamp": datetime.now(UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
    }
    if isinstance(err, ExtractionFailed):
        base["reason"] = err.reason
    if extra:
        base.update(extra)
    return base
