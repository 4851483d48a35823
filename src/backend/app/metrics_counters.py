from typing import Any
from prometheus_client import Counter, REGISTRY


def _counter(name: str, doc: str, labels: list[str]) -> Counter:
    # Tests may import the app multiple times; reuse an already registered collector
    try:
        return Counter(name, doc, labels)
    except ValueError:
        existing = REGISTRY._names_to_collectors.get(name)  # type: ignore[attr-defined]
        if existing is None:
            raise
        return existing  # type: ignore[return-value]


TOKEN_EXCHANGES = _counter("docbot_token_exchanges_total", "OAuth authorization-code exchanges", ["provider", "status"])
TOKEN_REFRESHES = _counter("docbot_token_refreshes_total", "OAuth token refreshes", ["provider", "status"])
PROXY_REQUESTS = _counter("docbot_proxy_requests_total", "Forwarded API requests", ["route", "status"])


def sum_counter(counter: Any) -> int:
    try:
        total = 0.0
        metrics = getattr(counter, "_metrics", {})
        if isinstance(metrics, dict):
            for child in metrics.values():
                try:
                    val = getattr(child, "_value").get()
                    total += float(val)
                except Exception:
                    continue
        return int(total)
    except Exception:
        return 0
