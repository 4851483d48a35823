import os
from typing import List
from dotenv import load_dotenv


# Local development reads .env from the project root unless ENV_FILE points elsewhere
try:
    load_dotenv(dotenv_path=os.getenv("ENV_FILE", ".env"), override=False)
except Exception:
    pass


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def encryption_key() -> str:
    return _env("ENCRYPTION_KEY", "dev-secret-key-32-chars-must-be-set")


# ---- Jira (Atlassian OAuth 2.0 3LO) ----
def jira_oauth_creds() -> tuple[str, str]:
    return _env("JIRA_CLIENT_ID", ""), _env("JIRA_CLIENT_SECRET", "")


def jira_auth_url() -> str:
    return _env("JIRA_AUTH_URL", "https://auth.atlassian.com/authorize")


def jira_token_url() -> str:
    return _env("JIRA_TOKEN_URL", "https://auth.atlassian.com/oauth/token")


def jira_resources_url() -> str:
    return _env("JIRA_RESOURCES_URL", "https://api.atlassian.com/oauth/token/accessible-resources")


def jira_api_base() -> str:
    return _env("JIRA_API_BASE", "https://api.atlassian.com/ex/jira").rstrip("/")


def jira_scopes() -> str:
    return _env("JIRA_SCOPES", "read:jira-work read:jira-user write:jira-work offline_access")


def jira_refresh_skew_seconds() -> int:
    return max(0, _env_int("JIRA_REFRESH_SKEW_SECONDS", 300))


# ---- Salesforce ----
def salesforce_oauth_creds() -> tuple[str, str]:
    return _env("SF_CLIENT_ID", ""), _env("SF_CLIENT_SECRET", "")


def salesforce_login_url(is_sandbox: bool = False) -> str:
    if is_sandbox:
        return _env("SF_SANDBOX_LOGIN_URL", "https://test.salesforce.com").rstrip("/")
    return _env("SF_LOGIN_URL", "https://login.salesforce.com").rstrip("/")


# ---- OAuth state / proxy ----
def oauth_state_ttl_seconds() -> int:
    return max(60, _env_int("OAUTH_STATE_TTL_SECONDS", 600))


def cors_origins() -> List[str]:
    raw = _env("CORS_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


def proxy_timeout_seconds() -> int:
    return max(1, _env_int("PROXY_TIMEOUT_SECONDS", 30))


def proxy_rate_limit() -> tuple[int, int]:
    return max(1, _env_int("PROXY_RATE_LIMIT_PER_MINUTE", 120)), max(0, _env_int("PROXY_RATE_LIMIT_BURST", 60))


def redis_url() -> str:
    return _env("REDIS_URL", "")


def server_bind() -> tuple[str, int]:
    return _env("HOST", "localhost"), _env_int("PORT", 8080)
