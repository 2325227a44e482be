from __future__ import annotations

"""Lightweight HTTP client utils with hard timeouts.

Uses stdlib urllib. Every call carries an explicit timeout; retries are opt-in
so callers that budget their own time (the rate source chain) can disable them.
"""
import json
import time
import urllib.request
import urllib.error
from typing import Any, Dict, Mapping, Optional

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "saraf-exchange-core/0.1",
}


class HttpError(Exception):
    pass


def _request_json(
    req: urllib.request.Request, *, timeout: float, retries: int, backoff: float
) -> Dict[str, Any]:
    last_err: Optional[Exception] = None
    for attempt in range(retries + 1):
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
                if resp.status >= 300:
                    raise HttpError(f"HTTP {resp.status} for {req.full_url}")
                data = resp.read()
                if not data:
                    return {}
                return json.loads(data.decode("utf-8"))
        except (
            urllib.error.URLError,
            TimeoutError,
            HttpError,
            ValueError,
        ) as e:  # ValueError for JSON decode
            last_err = e
            if attempt == retries:
                break
            time.sleep(backoff * (2**attempt))
    raise HttpError(f"Failed request to {req.full_url}: {last_err}")


def get_json(
    url: str,
    *,
    timeout: float = 5.0,
    retries: int = 0,
    backoff: float = 0.5,
    headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    req = urllib.request.Request(
        url, headers={**DEFAULT_HEADERS, **(headers or {})}, method="GET"
    )
    return _request_json(req, timeout=timeout, retries=retries, backoff=backoff)


def post_json(
    url: str,
    payload: Mapping[str, Any],
    *,
    timeout: float = 5.0,
    retries: int = 0,
    backoff: float = 0.5,
    headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        headers={
            **DEFAULT_HEADERS,
            "Content-Type": "application/json",
            **(headers or {}),
        },
        method="POST",
    )
    return _request_json(req, timeout=timeout, retries=retries, backoff=backoff)
