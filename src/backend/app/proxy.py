"""
Request forwarding for vendor APIs that do not allow browser (CORS) calls.
Used by /api/proxy?proxyUrl=... and the path-style /https://host/... routes.
"""
import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
import httpx

from .http_client import request_with_retry

logger = logging.getLogger(__name__)

FORWARDED_HEADERS = {
    "authorization": "Authorization",
    "content-type": "Content-Type",
    "accept": "Accept",
    "salesforceproxy-endpoint": "SalesforceProxy-Endpoint",
    "soapaction": "SOAPAction",
    "sforce-call-options": "Sforce-Call-Options",
}
# Our own session header and hop-by-hop/forwarding noise never leave the proxy
DROPPED_X_HEADERS = {"x-jira-connection-id", "x-forwarded-for", "x-forwarded-host", "x-forwarded-proto", "x-real-ip"}
# content-length is recomputed from the decoded body by the response class
RETURNED_HEADERS = ("content-type", "cache-control")
BODYLESS_METHODS = {"GET", "HEAD"}


def normalize_target_url(url: str) -> str:
    """Repair a scheme that lost one slash in routing (https:/host -> https://host)."""
    url = (url or "").strip()
    for scheme in ("https", "http"):
        single = f"{scheme}:/"
        if url.startswith(single) and not url.startswith(f"{scheme}://"):
            url = f"{scheme}://" + url[len(single):]
            break
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"unsupported proxy target: {url[:200]}")
    return url


def merge_query(url: str, params: Iterable[Tuple[str, str]]) -> str:
    extra = list(params)
    if not extra:
        return url
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def forward_headers(incoming: Mapping[str, str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for key, value in incoming.items():
        k = key.lower()
        if k in ("cookie", "cookie2"):
            continue
        if k in FORWARDED_HEADERS:
            out[FORWARDED_HEADERS[k]] = value
        elif k.startswith("x-") and k not in DROPPED_X_HEADERS:
            out[key] = value
    return out


def response_headers(upstream: httpx.Response) -> Dict[str, str]:
    return {k: upstream.headers[k] for k in RETURNED_HEADERS if k in upstream.headers}


def forward(method: str, url: str, headers: Mapping[str, str], body: Optional[bytes], timeout: float = 30) -> httpx.Response:
    method = method.upper()
    content = None if method in BODYLESS_METHODS else (body or None)
    logger.info("proxy_forward", extra={"method": method, "target": urlsplit(url).netloc})
    # only idempotent reads are retried
    attempts = 3 if method in BODYLESS_METHODS else 1
    return request_with_retry(method, url, headers=dict(headers), content=content, timeout=timeout, attempts=attempts)
