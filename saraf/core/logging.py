import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-Id"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = request_id_ctx.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Hawala and rate code attach identifiers through ``extra=``; the keys in
    EXTRA_KEYS are copied into the line when present.
    """

    EXTRA_KEYS = (
        "transaction_id",
        "reference_code",
        "source",
        "currency",
        "cache_status",
        "attempt",
    )

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        line: Dict[str, Any] = {
            "time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        line.update(
            {key: getattr(record, key) for key in self.EXTRA_KEYS if hasattr(record, key)}
        )
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def init_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)


async def request_context_middleware(request, call_next):  # type: ignore
    # honour an id minted by the gateway so one transfer can be traced end to end
    rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    token = request_id_ctx.set(rid)
    logger = logging.getLogger("saraf.request")
    started = time.perf_counter()
    try:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        logger.debug(
            "%s %s -> %d in %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response
    finally:
        request_id_ctx.reset(token)
