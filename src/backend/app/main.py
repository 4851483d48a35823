from __future__ import annotations

from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Any, Dict, Optional
import logging
import secrets as _secrets
import httpx
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.concurrency import run_in_threadpool

from . import config
from .cache import backend_name, cache_pop, cache_set
from .events import emit_event
from .http_client import ProviderError
from .integrations import jira_cloud, salesforce
from .metrics_counters import PROXY_REQUESTS, TOKEN_EXCHANGES, TOKEN_REFRESHES
from .proxy import forward, forward_headers, merge_query, normalize_target_url, response_headers
from .rate_limit import check_and_increment
from .sessions import JiraSession

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]

tags_metadata = [
    {"name": "Health", "description": "Liveness and metrics."},
    {"name": "Jira", "description": "Atlassian OAuth and tenant-scoped REST proxy."},
    {"name": "Salesforce", "description": "Salesforce OAuth token exchange."},
    {"name": "Proxy", "description": "CORS forwarding to vendor APIs."},
]

app = FastAPI(title="DocBot Backend", version="0.3.0", openapi_tags=tags_metadata)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS", "PATCH", "DELETE", "POST", "PUT"],
    allow_headers=[
        "X-CSRF-Token", "X-Requested-With", "Accept", "Accept-Version", "Content-Length", "Content-MD5",
        "Content-Type", "Date", "X-Api-Version", "Authorization", "SalesforceProxy-Endpoint", "SOAPAction",
        "Sforce-Call-Options", "X-Jira-Connection-Id",
    ],
    expose_headers=["X-Jira-New-Connection-Id"],
)


class JiraExchangeRequest(BaseModel):
    code: Optional[str] = None
    redirectUri: Optional[str] = None
    state: Optional[str] = None


class SalesforceExchangeRequest(BaseModel):
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    is_sandbox: bool = False
    state: Optional[str] = None


class SalesforceRefreshRequest(BaseModel):
    refresh_token: Optional[str] = None
    is_sandbox: bool = False


def _error(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


# ---------------------------- OAuth state ----------------------------
def _issue_state(provider: str, data: Optional[Dict[str, Any]] = None) -> str:
    state = _secrets.token_urlsafe(24)
    cache_set(f"oauth_state:{provider}:{state}", data or {"provider": provider}, ttl=config.oauth_state_ttl_seconds())
    return state


def _consume_state(provider: str, state: Optional[str]) -> Optional[Dict[str, Any]]:
    """Single-use lookup of a state we issued. A miss is logged, not fatal."""
    if not state:
        return None
    data = cache_pop(f"oauth_state:{provider}:{state}")
    if data is None:
        logger.warning("oauth_state_miss", extra={"provider": provider})
        emit_event("OauthStateMiss", {"provider": provider})
        return None
    return data


def _rate_limited(request: Request, key: str) -> Optional[JSONResponse]:
    per_minute, burst = config.proxy_rate_limit()
    client_key = request.client.host if request.client else "anon"
    ok, _count = check_and_increment(client_key, key, max_per_minute=per_minute, burst=burst)
    if ok:
        return None
    PROXY_REQUESTS.labels(route=key, status="rate_limited").inc()
    return _error("rate_limited", 429)


def _passthrough(upstream: httpx.Response) -> Response:
    return Response(content=upstream.content, status_code=upstream.status_code, headers=response_headers(upstream))


# ------------------------------ Health ------------------------------
@app.get("/health", tags=["Health"])
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/live", tags=["Health"])
def live() -> Dict[str, str]:
    return {"status": "live"}


@app.get("/cache/health", tags=["Health"])
def cache_health() -> Dict[str, str]:
    return {"backend": backend_name()}


@app.get("/metrics/prometheus", tags=["Health"])
def prometheus_metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ------------------------------- Jira -------------------------------
@app.get("/api/jira/authorize", tags=["Jira"])
def jira_authorize(redirect_uri: str = Query(...)):
    if not jira_cloud.is_configured():
        return _error("Missing Jira server configuration", 500)
    state = _issue_state("jira")
    return {"url": jira_cloud.authorize_url(redirect_uri, state), "state": state}


@app.post("/api/jira/exchangeToken", tags=["Jira"])
def jira_exchange_token(req: JiraExchangeRequest):
    if not jira_cloud.is_configured():
        return _error("Missing Jira server configuration", 500)
    if not req.code or not req.redirectUri:
        return _error("Missing code or redirectUri", 400)
    _consume_state("jira", req.state)
    try:
        session, resources = jira_cloud.connect(req.code, req.redirectUri)
    except (ProviderError, httpx.HTTPError) as exc:
        logger.exception("jira_exchange_failed")
        TOKEN_EXCHANGES.labels(provider="jira", status="error").inc()
        return _error(str(exc) or exc.__class__.__name__, 400)
    TOKEN_EXCHANGES.labels(provider="jira", status="ok").inc()
    emit_event("JiraConnected", {"cloud_id": session.cloud_id, "sites": len(resources)})
    return {"success": True, "connectionId": session.to_connection_id(), "resources": resources}


def _refresh_jira_session(session: JiraSession) -> Optional[JiraSession]:
    try:
        token = jira_cloud.refresh(session.refresh_token or "")
    except (ProviderError, httpx.HTTPError):
        # stale token is still tried; the upstream answers 401 if it is really dead
        logger.warning("jira_refresh_failed", extra={"cloud_id": session.cloud_id}, exc_info=True)
        TOKEN_REFRESHES.labels(provider="jira", status="error").inc()
        return None
    TOKEN_REFRESHES.labels(provider="jira", status="ok").inc()
    emit_event("JiraTokenRefreshed", {"cloud_id": session.cloud_id})
    return session.with_refreshed_tokens(token)


@app.api_route("/api/jira/proxy", methods=PROXY_METHODS, tags=["Jira"])
async def jira_proxy(
    request: Request,
    path: Optional[str] = Query(None),
    x_jira_connection_id: Optional[str] = Header(default=None),
):
    if not x_jira_connection_id or not path:
        return _error("Missing Connection ID or Path", 400)
    limited = _rate_limited(request, "jira_proxy")
    if limited is not None:
        return limited
    session = JiraSession.from_connection_id(x_jira_connection_id)
    if session is None:
        return _error("Invalid Session", 401)
    try:
        target = jira_cloud.api_url(session.cloud_id, path)
    except ValueError as exc:
        return _error(str(exc), 400)

    new_connection_id: Optional[str] = None
    if session.needs_refresh(skew_seconds=config.jira_refresh_skew_seconds()):
        logger.info("jira_token_refreshing", extra={"cloud_id": session.cloud_id})
        refreshed = await run_in_threadpool(_refresh_jira_session, session)
        if refreshed is not None:
            session = refreshed
            new_connection_id = session.to_connection_id()

    headers = {
        "Authorization": f"Bearer {session.access_token}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    body = await request.body()
    try:
        upstream = await run_in_threadpool(
            forward, request.method, target, headers, body, config.proxy_timeout_seconds()
        )
    except httpx.HTTPError as exc:
        logger.exception("jira_proxy_failed", extra={"cloud_id": session.cloud_id})
        PROXY_REQUESTS.labels(route="jira_proxy", status="error").inc()
        return _error(str(exc) or exc.__class__.__name__, 500)

    PROXY_REQUESTS.labels(route="jira_proxy", status=str(upstream.status_code)).inc()
    resp: Response = _passthrough(upstream)
    if upstream.content and "json" in upstream.headers.get("content-type", ""):
        try:
            resp = JSONResponse(upstream.json(), status_code=upstream.status_code)
        except ValueError:
            logger.warning("jira_proxy_invalid_json", extra={"cloud_id": session.cloud_id, "status": upstream.status_code})
    if new_connection_id:
        resp.headers["X-Jira-New-Connection-Id"] = new_connection_id
    return resp


# ---------------------------- Salesforce ----------------------------
@app.get("/api/salesforce/authorize", tags=["Salesforce"])
def salesforce_authorize(redirect_uri: str = Query(...), is_sandbox: bool = Query(False)):
    if not salesforce.is_configured():
        return _error("Server configuration error", 500)
    verifier, challenge = salesforce.new_pkce_pair()
    state = _issue_state("salesforce", {"code_verifier": verifier, "is_sandbox": is_sandbox})
    return {"url": salesforce.authorize_url(redirect_uri, state, challenge, is_sandbox=is_sandbox), "state": state}


@app.post("/api/salesforce/exchangeToken", tags=["Salesforce"])
def salesforce_exchange_token(req: SalesforceExchangeRequest):
    if not req.code or not req.redirect_uri:
        return _error("Missing code or redirect_uri", 400)
    if not salesforce.is_configured():
        logger.error("salesforce_credentials_missing")
        return _error("Server configuration error", 500)
    issued = _consume_state("salesforce", req.state) or {}
    code_verifier = req.code_verifier or issued.get("code_verifier")
    is_sandbox = req.is_sandbox or bool(issued.get("is_sandbox"))
    logger.info("salesforce_exchange", extra={"sandbox": is_sandbox})
    try:
        status, data = salesforce.exchange_code(req.code, req.redirect_uri, code_verifier=code_verifier, is_sandbox=is_sandbox)
    except httpx.HTTPError as exc:
        logger.exception("salesforce_exchange_failed")
        TOKEN_EXCHANGES.labels(provider="salesforce", status="error").inc()
        return _error(str(exc) or exc.__class__.__name__, 500)
    if status >= 400:
        logger.error("salesforce_token_error", extra={"status": status, "sf_error": data.get("error")})
        TOKEN_EXCHANGES.labels(provider="salesforce", status="error").inc()
        return JSONResponse(data, status_code=status)
    TOKEN_EXCHANGES.labels(provider="salesforce", status="ok").inc()
    emit_event("SalesforceConnected", {"instance_url": data.get("instance_url"), "sandbox": is_sandbox})
    return JSONResponse(data, status_code=200)


@app.post("/api/salesforce/refreshToken", tags=["Salesforce"])
def salesforce_refresh_token(req: SalesforceRefreshRequest):
    if not req.refresh_token:
        return _error("Missing refresh_token", 400)
    if not salesforce.is_configured():
        return _error("Server configuration error", 500)
    try:
        status, data = salesforce.refresh(req.refresh_token, is_sandbox=req.is_sandbox)
    except httpx.HTTPError as exc:
        logger.exception("salesforce_refresh_failed")
        TOKEN_REFRESHES.labels(provider="salesforce", status="error").inc()
        return _error(str(exc) or exc.__class__.__name__, 500)
    TOKEN_REFRESHES.labels(provider="salesforce", status=("ok" if status < 400 else "error")).inc()
    return JSONResponse(data, status_code=status)


# ------------------------------ Proxy -------------------------------
async def _forward_request(request: Request, target: str, route: str) -> Response:
    body = await request.body()
    headers = forward_headers(request.headers)
    try:
        upstream = await run_in_threadpool(forward, request.method, target, headers, body, config.proxy_timeout_seconds())
    except httpx.HTTPError as exc:
        logger.exception("proxy_request_failed", extra={"route": route})
        PROXY_REQUESTS.labels(route=route, status="error").inc()
        return _error("Proxy Request Failed", 500, details=(str(exc) or exc.__class__.__name__))
    PROXY_REQUESTS.labels(route=route, status=str(upstream.status_code)).inc()
    return _passthrough(upstream)


@app.api_route("/api/proxy", methods=PROXY_METHODS, tags=["Proxy"])
async def api_proxy(request: Request):
    params = request.query_params.multi_items()
    proxy_url = next((v for k, v in params if k == "proxyUrl"), None)
    if not proxy_url:
        return _error('Missing "proxyUrl" query parameter', 400)
    limited = _rate_limited(request, "api_proxy")
    if limited is not None:
        return limited
    try:
        target = normalize_target_url(proxy_url)
    except ValueError as exc:
        return _error(str(exc), 400)
    # Other query params (e.g. SOQL q) were split off the target by the router
    target = merge_query(target, [(k, v) for k, v in params if k != "proxyUrl"])
    return await _forward_request(request, target, "api_proxy")


def _raw_target(request: Request, scheme: str, rest: str) -> str:
    """Target URL exactly as the client sent it; {rest} arrives percent-decoded (%23 would become a fragment)."""
    raw = request.scope.get("raw_path")
    if not raw:
        return f"{scheme}:/{rest}"
    path = raw.decode("latin-1").split("?", 1)[0]
    return path[1:] if path.startswith("/") else path


async def _path_proxy(request: Request, scheme: str, rest: str) -> Response:
    if not request.headers.get("origin"):
        return _error("Missing required request header. Must specify one of: origin", 400)
    limited = _rate_limited(request, "path_proxy")
    if limited is not None:
        return limited
    try:
        target = normalize_target_url(_raw_target(request, scheme, rest))
    except ValueError as exc:
        return _error(str(exc), 400)
    if request.url.query:
        target = f"{target}{'&' if '?' in target else '?'}{request.url.query}"
    return await _forward_request(request, target, "path_proxy")


@app.api_route("/https:/{rest:path}", methods=PROXY_METHODS, tags=["Proxy"])
async def path_proxy_https(request: Request, rest: str):
    return await _path_proxy(request, "https", rest)


@app.api_route("/http:/{rest:path}", methods=PROXY_METHODS, tags=["Proxy"])
async def path_proxy_http(request: Request, rest: str):
    return await _path_proxy(request, "http", rest)
