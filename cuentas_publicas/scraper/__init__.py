"""Scraper module for downloading public-finance resources.

All network access goes through :func:`fetch`, which retries transport
failures and non-2xx responses with exponential backoff and raises
``TransportError`` once the retry bound is spent.
"""

from cuentas_publicas.scraper.http_client import fetch, fetch_bytes, fetch_json, fetch_text

__all__ = ["fetch", "fetch_bytes", "fetch_json", "fetch_text"]
