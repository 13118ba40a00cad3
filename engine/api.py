import inspect
import asyncio
import logging
import os
import time
from dotenv import load_dotenv
from utils.core.log import setup_logging
from utils.core.warnings_config import configure_warning_filters
from utils.core.errors import QuoteToolError, make_error_payload
from flask import Flask, request, jsonify

load_dotenv()
configure_warning_filters()

from tools.quotes.quotes import (
    analyze_batch_main,
    compare_main,
    comparisons_main,
    normalize_one_main,
    process_file_main,
)

app = Flask(__name__)
setup_logging()
logger = logging.getLogger("QuotesBE")

"""
API for the quote engine

pip install flask python-dotenv
"""


_LAST = {"status": None, "t": 0.0}
GET_INFO_EVERY_SEC = 300


def _should_log_get(current_status: str) -> bool:
    now = time.monotonic()
    if _LAST["status"] != current_status or now - _LAST["t"] >= GET_INFO_EVERY_SEC:
        _LAST["status"] = current_status
        _LAST["t"] = now
        return True
    return False


def handle(tool_func=None, *args, **kwargs):
    """
    Universal wrapper for all endpoint tools.

    - Expects the caller (each route) to pass ALL parameters required
      by the tool function through *args / **kwargs.
    - Builds the standard response envelope
      {userId, status, error, tokens, toolData}.
    - QuoteToolError is answered with its own HTTP status; anything else
      that escapes a tool is a 500.
    """
    req_json = kwargs.pop("request_body", {})
    remote_ip = request.remote_addr
    user_id = req_json.get("userId", "")
    tool_name = tool_func.__name__ if tool_func else "unknown_tool"
    scope_id = req_json.get("categoryId") or req_json.get("category_id") or "quotes"
    user_name = req_json.get("userName", "")
    method = request.method

    context = {
        "tool_name": tool_name,
        "ip_address": remote_ip,
        "scope_id": scope_id,
        "request_type": method,
        "user_name": user_name,
    }
    logger = logging.LoggerAdapter(logging.getLogger("QuotesBE"), context)

    if method == "POST":
        logger.info("Process started")
    elif method not in ("GET",):
        logger.info("Invoke via %s: %s (user=%s)", method, tool_name, user_id)

    response = {
        "userId": user_id,  # always echo back
        "status": "",  # will be set below
        "error": "",
        "tokens": 0,  # default 0 when unknown
        "toolData": {},  # populated on success
    }

    call_kwargs = dict(kwargs)
    sig = inspect.signature(tool_func) if tool_func else None
    if sig:
        if "remote_ip" in sig.parameters:
            call_kwargs["remote_ip"] = remote_ip
        if "request_method" in sig.parameters:
            call_kwargs["request_method"] = method
        if "user_name" in sig.parameters and "user_name" not in call_kwargs:
            call_kwargs["user_name"] = user_name

    try:
        if asyncio.iscoroutinefunction(tool_func):
            result = asyncio.run(tool_func(*args, **call_kwargs))
        else:
            result = tool_func(*args, **call_kwargs)

    except QuoteToolError as exc:
        logger.warning(f"{tool_name} failed: {exc.message}")
        payload = make_error_payload(tool_name, exc)
        response["status"] = "error"
        response["error"] = payload.pop("error")
        response["toolData"] = {
            k: v for k, v in payload.items() if k not in ("status",)
        }
        return jsonify(response), exc.http_status

    except Exception as exc:
        logger.exception(f"{tool_name} crashed")
        response["status"] = "error"
        response["error"] = str(exc)
        return jsonify(response), 500

    # normalise tool output
    #
    # We expect each tool to return:
    #   {
    #       "status": "done" | "error",
    #       "tokens": <int>,          # optional
    #       ... <arbitrary payload>   # everything else = toolData
    #   }
    if isinstance(result, dict):
        response["tokens"] = result.pop("tokens", 0)
        response["status"] = result.pop("status", "done")

        if "error" in result:
            response["error"] = result.pop("error")
        else:
            response["toolData"] = result
    else:
        response["status"] = "done" if result else "error"
        response["toolData"] = result

    if method == "GET":
        current_status = response.get("status") or (
            "error" if response.get("error") else "done"
        )
        if _should_log_get(current_status):
            logger.info("Status check: %s", current_status)

    return jsonify(response), 200


def bad_request(msg: str, user_id: str = ""):
    envelope = {
        "userId": user_id,
        "status": "error",
        "error": msg,
        "tokens": 0,
        "toolData": {},
    }
    return jsonify(envelope), 400


def get_payload() -> dict:
    """
    Return the request payload as a dict.
    - POST          - accept plaintext JSON.
    - GET / DELETE  - flat query params.
    """
    if request.method in ("GET", "DELETE"):
        return request.args.to_dict(flat=True) if request.args else {}
    return request.get_json(force=True, silent=True) or {}


def _arg(data: dict, *names, default=None):
    """First non-empty value among *names*, looked up in toolData then the body."""
    td = data.get("toolData") or {}
    for source in (td, data):
        if not isinstance(source, dict):
            continue
        for name in names:
            value = source.get(name)
            if value not in (None, "", []):
                return value
    return default


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def ping_status_tool(
    scope_id: str | None = None,
    request_method: str | None = None,
    remote_ip: str | None = None,
    user_name: str | None = None,
) -> dict:
    """
    Healthcheck tool.
    - Returns {"status": "pong"} (wrapped by handle()).
    - Logs an INFO line into activity.log.
    """
    from utils.core.log import scope_tool_logger, get_logger, set_logger

    base_logger = scope_tool_logger(scope_id=scope_id or "unknown", tool_name="ping")
    set_logger(
        base_logger,
        tool_name="ping",
        tool_base="ping",
        scope_id=scope_id or "unknown",
        ip_address=remote_ip or "no_ip",
        request_type=request_method or "N/A",
    )
    get_logger().info("Ping received; replying with pong")
    return {"status": "pong"}


@app.route("/ping", methods=["GET", "POST"])
def PING():
    data = get_payload()
    return handle(
        tool_func=ping_status_tool,
        request_body=data,
        scope_id=data.get("scopeId"),
        user_name=data.get("userName") or data.get("user"),
    )


@app.route("/quotes/analyze", methods=["POST"])
def QUOTE_ANALYZE():
    """Normalize one quote text. Nothing is stored."""
    data = get_payload()
    text = _arg(data, "text")
    if not text or not str(text).strip():
        return bad_request("text is required", data.get("userId", ""))

    return handle(
        tool_func=normalize_one_main,
        request_body=data,
        text=str(text),
        scope_id=_arg(data, "categoryId"),
    )


@app.route("/quotes/analyze-batch", methods=["POST"])
def QUOTE_ANALYZE_BATCH():
    data = get_payload()
    quote_ids = _arg(data, "quoteIds", "quote_ids", default=[])
    if not isinstance(quote_ids, list) or not quote_ids:
        return bad_request("quoteIds must be a non-empty list", data.get("userId", ""))

    return handle(
        tool_func=analyze_batch_main,
        request_body=data,
        quote_ids=[str(q) for q in quote_ids],
        reanalyze=_as_bool(_arg(data, "reanalyze", default=False)),
        scope_id=_arg(data, "categoryId"),
    )


@app.route("/compare", methods=["POST"])
def COMPARE():
    data = get_payload()
    category_id = _arg(data, "categoryId", "category_id")
    quote_ids = _arg(data, "quoteIds", "quote_ids", default=[])
    if not category_id or not isinstance(quote_ids, list) or len(quote_ids) < 2:
        return bad_request(
            "categoryId and at least two quoteIds are required", data.get("userId", "")
        )

    return handle(
        tool_func=compare_main,
        request_body=data,
        category_id=str(category_id),
        quote_ids=[str(q) for q in quote_ids],
        specification_text=_arg(data, "specificationText", "specification_text"),
        specification_id=_arg(data, "specificationId", "specification_id"),
    )


@app.route("/comparisons", methods=["GET", "POST", "DELETE"])
def COMPARISONS():
    """
    Stored comparison of a category
    - GET - fetch it (null toolData.comparison when there is none)
    - POST - replace it with the given result
    - DELETE - remove it (idempotent)
    """
    data = get_payload()
    category_id = _arg(data, "categoryId", "category_id")
    if not category_id:
        return bad_request("categoryId is required", data.get("userId", ""))

    kwargs = {}
    if request.method == "POST":
        quote_ids = _arg(data, "quoteIds", "quote_ids")
        result = _arg(data, "result")
        if not isinstance(quote_ids, list) or not quote_ids or not isinstance(result, dict):
            return bad_request(
                "category_id, quote_ids and result are required", data.get("userId", "")
            )
        kwargs = {
            "specification_id": _arg(data, "specificationId", "specification_id"),
            "quote_ids": [str(q) for q in quote_ids],
            "result": result,
        }

    return handle(
        tool_func=comparisons_main,
        request_body=data,
        category_id=str(category_id),
        **kwargs,
    )


@app.route("/files/process", methods=["POST"])
def FILES_PROCESS():
    data = get_payload()
    file_path = _arg(data, "filePath", "file_path")
    file_name = _arg(data, "fileName", "file_name")
    if not file_path or not file_name:
        return bad_request("filePath and fileName are required", data.get("userId", ""))

    return handle(
        tool_func=process_file_main,
        request_body=data,
        file_path=str(file_path),
        file_name=str(file_name),
    )


if __name__ == "__main__":
    if os.path.exists("crt.pem") and os.path.exists("key.pem"):
        app.run(host="0.0.0.0", port=5000, ssl_context=("crt.pem", "key.pem"))
    else:
        app.run(host="0.0.0.0", port=5000)
