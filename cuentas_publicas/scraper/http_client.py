"""Resilient HTTP client shared by every source routine.

Each call is an independent, stateless request: a fresh ``httpx.AsyncClient``
is opened per attempt, so no connection or session state leaks between
decoders.

Functions
---------
fetch : Request with bounded retries, exponential backoff and a per-attempt timeout
fetch_bytes, fetch_text, fetch_json : Convenience wrappers returning decoded bodies

Notes
-----
Backoff is ``backoff_base_ms * 2**attempt`` (1 s, 2 s, ...) with no jitter.
The final failed attempt raises :class:`~cuentas_publicas.errors.TransportError`
chained from the underlying ``httpx`` error.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx

from cuentas_publicas.config import get_http_settings, setup_logging
from cuentas_publicas.errors import StructuralError, TransportError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = setup_logging(__name__)

__all__ = ["fetch", "fetch_bytes", "fetch_json", "fetch_text"]

DEFAULT_HEADERS = {
    "User-Agent": "cuentas-publicas/0.1 (+https://github.com/cuentas-publicas)",
    "Accept-Language": "es-ES,es;q=0.9",
}


async def fetch(
    url: str,
    *,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    max_retries: int | None = None,
    timeout_ms: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """Perform a request, retrying on transport errors and non-2xx statuses.

    Parameters
    ----------
    url : str
        Absolute URL to request.
    method : str, optional
        HTTP verb. Default ``"GET"``.
    headers : dict[str, str] or None, optional
        Extra headers merged over :data:`DEFAULT_HEADERS`.
    params : dict[str, Any] or None, optional
        Query-string parameters.
    max_retries : int or None, optional
        Retries after the first attempt. ``None`` reads ``http.max_retries`` from config.
    timeout_ms : int or None, optional
        Per-attempt deadline in milliseconds. ``None`` reads ``http.timeout_ms``.
    transport : httpx.AsyncBaseTransport or None, optional
        Custom transport (tests use ``httpx.MockTransport``).
    sleep : callable, optional
        Awaitable used for backoff delays.

    Returns
    -------
    httpx.Response
        The first successful (2xx) response.

    Raises
    ------
    TransportError
        If every attempt failed.
    """
    settings = get_http_settings()
    retries = settings["max_retries"] if max_retries is None else max_retries
    timeout = (settings["timeout_ms"] if timeout_ms is None else timeout_ms) / 1000
    backoff_base = settings["backoff_base_ms"]
    merged_headers = {**DEFAULT_HEADERS, **(headers or {})}

    for attempt in range(retries + 1):
        try:
            # The deadline covers connect, headers and body of this attempt
            async with asyncio.timeout(timeout), httpx.AsyncClient(
                timeout=timeout,
                follow_redirects=True,
                transport=transport,
            ) as client:
                response = await client.request(method, url, headers=merged_headers, params=params)
                response.raise_for_status()  # Raise on 4xx/5xx
                await response.aread()
                return response
        except (httpx.HTTPError, TimeoutError) as err:
            if attempt == retries:
                raise TransportError(url, attempt + 1, _describe(err)) from err
            delay_ms = backoff_base * 2**attempt
            logger.warning(
                "Attempt %d failed for %s: %s. Retrying in %dms...",
                attempt + 1,
                url,
                _describe(err),
                delay_ms,
            )
            await sleep(delay_ms / 1000)

    # Unreachable: the loop either returns or raises on the final attempt
    raise TransportError(url, retries + 1, "no attempts made")


def _describe(err: Exception) -> str:
    if isinstance(err, httpx.HTTPStatusError):
        return f"HTTP {err.response.status_code}"
    if isinstance(err, TimeoutError):
        return "attempt deadline exceeded"
    return f"{type(err).__name__}: {err}"


async def fetch_bytes(url: str, **kwargs: Any) -> bytes:
    """Fetch a binary payload (spreadsheets)."""
    response = await fetch(url, **kwargs)
    logger.info("Downloaded: %s (%d bytes)", url, len(response.content))
    return response.content


async def fetch_text(url: str, encoding: str | None = None, **kwargs: Any) -> str:
    """Fetch a text payload, optionally forcing the character encoding."""
    response = await fetch(url, **kwargs)
    if encoding:
        return response.content.decode(encoding, errors="replace")
    return response.text


async def fetch_json(url: str, **kwargs: Any) -> Any:
    """Fetch and decode a JSON document.

    Raises
    ------
    StructuralError
        If the body is not valid JSON.
    """
    response = await fetch(url, **kwargs)
    try:
        return response.json()
    except ValueError as err:
        msg = f"Invalid JSON from {url}: {err}"
        raise StructuralError(msg) from err
