"""
Live smoke checks against the configured services.

Runs the self-check ``main()`` of every component that talks to something
real (database, object storage, LLM provider) plus the offline parsers.

    python -m utils.check               # everything
    python -m utils.check db bucket     # only the named checks
"""

import sys
import logging

from utils.core.log import setup_logging, scope_tool_logger, set_logger
from utils.db.connection import main as db_main
from utils.storage.bucket import main as bucket_main
from utils.document.doc import main as doc_main
from utils.core.jsonval import main as jsonval_main
from utils.llm.LLM import main as llm_main
from tools.quotes.quote_extract import main as quote_extract_main

# offline checks first, then the ones that need credentials
CHECKS = {
    "jsonval": jsonval_main,
    "doc": doc_main,
    "db": db_main,
    "bucket": bucket_main,
    "llm": llm_main,
    "quote_extract": quote_extract_main,
}


def _summary_logger() -> logging.LoggerAdapter:
    base = scope_tool_logger("system_check", "check")
    ctx = {"tool_name": "check", "scope_id": "system_check", "request_type": "CHECK"}
    set_logger(base, **ctx)
    return logging.LoggerAdapter(logging.getLogger("QuotesBE"), ctx)


def run_checks(names=None) -> bool:
    """Run the selected checks (all by default); True when every one passed."""
    selected = list(names or CHECKS)
    unknown = [n for n in selected if n not in CHECKS]
    if unknown:
        raise KeyError(f"Unknown check(s): {', '.join(unknown)}")

    failures = []
    for name in selected:
        try:
            ok = CHECKS[name]() is True
            reason = "" if ok else "returned a falsy result"
        except Exception as e:
            ok, reason = False, f"{e.__class__.__name__}: {e}"
        # each check binds its own logger
        log = _summary_logger()
        if ok:
            log.info(f"{name}: ok")
        else:
            log.error(f"{name}: FAILED ({reason})")
            failures.append(name)

    log = _summary_logger()
    log.info(f"{len(selected) - len(failures)}/{len(selected)} checks passed")
    if failures:
        log.error(f"Failed: {', '.join(failures)}")
    return not failures


if __name__ == "__main__":
    setup_logging()
    sys.exit(0 if run_checks(sys.argv[1:]) else 1)
