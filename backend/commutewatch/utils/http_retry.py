"""Retry helper for provider HTTP calls.

A poll cycle has a few minutes before the next chain link fires, so retries
are short and bounded: transient 5xx / 429 responses and network errors are
retried with a small backoff; client errors (bad key, bad coordinates) fail
immediately. ``Retry-After`` is honoured but capped at ``MAX_RETRY_AFTER``.

Usage:
    resp = retry_request(client.get, url, params=params)
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})
_RETRYABLE_EXCEPTIONS = (httpx.ConnectError, httpx.TimeoutException)

DEFAULT_DELAYS: tuple[float, ...] = (1.0, 3.0)
# Never sleep longer than this, whatever the server asks for
MAX_RETRY_AFTER: float = 30.0


def retry_request(
    request_fn: Callable[..., httpx.Response],
    *args: Any,
    delays: tuple[float, ...] | list[float] | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """Call ``request_fn(*args, **kwargs)``, retrying transient failures.

    Returns the first response with status < 400.

    Raises:
        httpx.HTTPStatusError: non-retryable status, or retryable status with
            no attempts left.
        httpx.ConnectError / httpx.TimeoutException: network failure with no
            attempts left.
    """
    delays = DEFAULT_DELAYS if delays is None else tuple(delays)
    attempts = len(delays) + 1

    for attempt in range(attempts):
        is_last = attempt == attempts - 1
        try:
            resp = request_fn(*args, **kwargs)
        except _RETRYABLE_EXCEPTIONS as exc:
            if is_last:
                raise
            delay = delays[attempt]
            logger.warning(
                "%s calling %s, retry %d/%d in %.1fs",
                type(exc).__name__, _url_for_log(args), attempt + 1, len(delays), delay,
            )
            time.sleep(delay)
            continue

        if resp.status_code < 400:
            return resp
        if resp.status_code not in RETRYABLE_STATUS_CODES or is_last:
            resp.raise_for_status()

        delay = _next_delay(resp, delays[attempt])
        logger.warning(
            "HTTP %d from %s, retry %d/%d in %.1fs",
            resp.status_code, _url_for_log(args), attempt + 1, len(delays), delay,
        )
        time.sleep(delay)

    raise RuntimeError("retry_request exhausted retries without result")


def _next_delay(resp: httpx.Response, default: float) -> float:
    if resp.status_code != 429:
        return default
    retry_after = resp.headers.get("Retry-After")
    if not retry_after:
        return default
    try:
        return min(max(default, float(retry_after)), MAX_RETRY_AFTER)
    except ValueError:
        return default


def _url_for_log(args: tuple) -> str:
    """Loggable URL without the query string (it may carry an API key)."""
    if args and isinstance(args[0], (str, httpx.URL)):
        return str(args[0]).split("?", 1)[0][:120]
    return "<unknown>"
