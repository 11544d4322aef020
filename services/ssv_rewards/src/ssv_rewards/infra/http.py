from __future__ import annotations

from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import settings


_SESSION: Optional[requests.Session] = None
DEFAULT_TIMEOUT = 10.0
RETRY_STATUSES = (429, 500, 502, 503, 504)


def _get_session() -> requests.Session:
    """Shared GET-only session; the key directory is the only outbound call."""
    global _SESSION
    if _SESSION is None:
        retry = Retry(
            total=settings.http_retries,
            backoff_factor=settings.http_backoff,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=frozenset({"GET"}),
        )
        s = requests.Session()
        s.mount("https://", HTTPAdapter(max_retries=retry))
        s.mount("http://", HTTPAdapter(max_retries=retry))
        _SESSION = s
    return _SESSION


def http_get(url: str, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
    return _get_session().get(url, **kwargs)
