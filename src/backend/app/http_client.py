import time as _time
from typing import Any, Dict, Optional
import httpx


class ProviderError(Exception):
    """Upstream OAuth/API provider rejected a call."""

    def __init__(self, message: str, status_code: int = 400, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


def request_with_retry(
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, object]] = None,
    data: Optional[Dict[str, object]] = None,
    json: Optional[Any] = None,
    content: Optional[bytes] = None,
    timeout: float = 20,
    attempts: int = 3,
    backoff_base: float = 0.35,
) -> httpx.Response:
    """Lightweight retry helper for provider calls (handles 429/5xx and timeouts)."""
    last_exc: Optional[Exception] = None
    last_resp: Optional[httpx.Response] = None
    tries = max(1, attempts)
    for i in range(tries):
        try:
            r = httpx.request(
                method.upper(), url, headers=headers, params=params, data=data, json=json, content=content, timeout=timeout
            )
        except httpx.HTTPError as e:
            last_exc = e
            last_resp = None
        else:
            if r.status_code != 429 and r.status_code < 500:
                return r
            last_resp = r
            last_exc = None
        if i + 1 < tries:
            _time.sleep(backoff_base * (2 ** i))
    if last_exc is not None:
        raise last_exc
    return last_resp


def response_json(r: httpx.Response) -> Any:
    """Parse a JSON body, falling back to {"error": <text>} for non-JSON replies."""
    try:
        return r.json()
    except ValueError:
        return {"error": (r.text or f"http_{r.status_code}")[:500]}
