import base64
import hashlib
import secrets
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from ..config import salesforce_login_url, salesforce_oauth_creds
from ..http_client import request_with_retry, response_json


def is_configured() -> bool:
    client_id, client_secret = salesforce_oauth_creds()
    return bool(client_id and client_secret)


def login_url(is_sandbox: bool = False) -> str:
    return salesforce_login_url(bool(is_sandbox))


def new_pkce_pair() -> Tuple[str, str]:
    """Return (code_verifier, S256 code_challenge)."""
    verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return verifier, challenge


def authorize_url(redirect_uri: str, state: str, code_challenge: Optional[str] = None, is_sandbox: bool = False) -> str:
    client_id, _ = salesforce_oauth_creds()
    query = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    if code_challenge:
        query["code_challenge"] = code_challenge
        query["code_challenge_method"] = "S256"
    return f"{login_url(is_sandbox)}/services/oauth2/authorize?{urlencode(query)}"


def _token_call(form: Dict[str, object], is_sandbox: bool, attempts: int = 3) -> Tuple[int, Dict[str, Any]]:
    r = request_with_retry(
        "POST",
        f"{login_url(is_sandbox)}/services/oauth2/token",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        data=form,
        timeout=20,
        attempts=attempts,
    )
    data = response_json(r)
    if not isinstance(data, dict):
        data = {"error": "unexpected_response", "body": data}
    return r.status_code, data


def exchange_code(
    code: str, redirect_uri: str, code_verifier: Optional[str] = None, is_sandbox: bool = False
) -> Tuple[int, Dict[str, Any]]:
    """Exchange an authorization code. Salesforce's status and body are returned as-is."""
    client_id, client_secret = salesforce_oauth_creds()
    form: Dict[str, object] = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uri": redirect_uri,
        "code": code,
    }
    if code_verifier:
        form["code_verifier"] = code_verifier
    # codes are single use; never replayed
    return _token_call(form, is_sandbox, attempts=1)


def refresh(refresh_token: str, is_sandbox: bool = False) -> Tuple[int, Dict[str, Any]]:
    client_id, client_secret = salesforce_oauth_creds()
    form: Dict[str, object] = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
    }
    return _token_call(form, is_sandbox)
