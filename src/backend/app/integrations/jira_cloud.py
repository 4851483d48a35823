"""
Atlassian OAuth 2.0 (3LO) integration for Jira Cloud.
Tokens come from auth.atlassian.com; REST calls go through api.atlassian.com/ex/jira/{cloudId}.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from ..config import (
    jira_api_base,
    jira_auth_url,
    jira_oauth_creds,
    jira_resources_url,
    jira_scopes,
    jira_token_url,
)
from ..http_client import ProviderError, request_with_retry, response_json
from ..sessions import JiraSession

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    client_id, client_secret = jira_oauth_creds()
    return bool(client_id and client_secret)


def authorize_url(redirect_uri: str, state: str) -> str:
    """Build the Atlassian consent screen URL."""
    client_id, _ = jira_oauth_creds()
    query = {
        "audience": "api.atlassian.com",
        "client_id": client_id,
        "scope": jira_scopes(),
        "redirect_uri": redirect_uri,
        "state": state,
        "response_type": "code",
        "prompt": "consent",
    }
    return f"{jira_auth_url()}?{urlencode(query)}"


def _token_error(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        return str(data.get("error_description") or data.get("error") or fallback)
    return fallback


def exchange_code(code: str, redirect_uri: str) -> Dict[str, Any]:
    """Exchange an authorization code for access + refresh tokens."""
    client_id, client_secret = jira_oauth_creds()
    r = request_with_retry(
        "POST",
        jira_token_url(),
        headers={"Content-Type": "application/json"},
        json={
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        },
        timeout=20,
        # codes are single use; never replayed
        attempts=1,
    )
    data = response_json(r)
    if r.status_code >= 400 or not isinstance(data, dict) or not data.get("access_token"):
        raise ProviderError(_token_error(data, "Token exchange failed"), status_code=r.status_code, payload=data if isinstance(data, dict) else {})
    return data


def accessible_resources(access_token: str) -> List[Dict[str, Any]]:
    """List the Atlassian cloud sites the token can reach."""
    r = request_with_retry(
        "GET",
        jira_resources_url(),
        headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        timeout=20,
    )
    data = response_json(r)
    if r.status_code >= 400:
        raise ProviderError(_token_error(data, "Resource discovery failed"), status_code=r.status_code)
    if not isinstance(data, list) or not data:
        raise ProviderError("No Jira resources found")
    return data


def refresh(refresh_token: str) -> Dict[str, Any]:
    client_id, client_secret = jira_oauth_creds()
    r = request_with_retry(
        "POST",
        jira_token_url(),
        headers={"Content-Type": "application/json"},
        json={
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        },
        timeout=20,
    )
    data = response_json(r)
    if r.status_code >= 400 or not isinstance(data, dict) or not data.get("access_token"):
        raise ProviderError(_token_error(data, "Token refresh failed"), status_code=r.status_code)
    return data


def connect(code: str, redirect_uri: str, now: Optional[int] = None) -> Tuple[JiraSession, List[Dict[str, Any]]]:
    """Run the full callback flow: code exchange, site discovery, session binding.
    The session is bound to the first accessible site.
    """
    token = exchange_code(code, redirect_uri)
    resources = accessible_resources(str(token["access_token"]))
    cloud_id = str(resources[0].get("id") or "")
    if not cloud_id:
        raise ProviderError("No Jira resources found")
    session = JiraSession.from_token_response(token, cloud_id, now=now)
    logger.info("jira_connected", extra={"cloud_id": cloud_id, "sites": len(resources)})
    return session, resources


def api_url(cloud_id: str, path: str) -> str:
    """Tenant-scoped REST URL for a path such as /rest/api/3/project."""
    if not path or not path.startswith("/") or path.startswith("//"):
        raise ValueError("path must be an absolute API path")
    if "://" in path or any(seg == ".." for seg in path.split("?", 1)[0].split("/")):
        raise ValueError("path must not leave the Jira API host")
    return f"{jira_api_base()}/{cloud_id}{path}"
