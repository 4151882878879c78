"""Outbound HTTP helpers enforcing TLS verification and a host allowlist."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse
import os

import requests
from prometheus_client import Counter


EGRESS_FAILURES = Counter(
    "medscribe_egress_failures_total",
    "Outbound HTTP calls blocked or failed",
    ("reason",),
)

# Azure services are addressed through per-region or per-resource subdomains.
_ALLOWED_SUFFIXES = (
    ".api.cognitive.microsoft.com",
    ".openai.azure.com",
)


def _allowed_hosts() -> set[str]:
    raw = os.getenv("ALLOWED_EGRESS_HOSTS")
    hosts: set[str] = {"localhost", "127.0.0.1"}
    if raw:
        hosts.update(host.strip().lower() for host in raw.split(",") if host.strip())
    for env_var in ("AZURE_OPENAI_ENDPOINT", "OPENAI_ENDPOINT", "MEDSCRIBE_API_URL"):
        value = os.getenv(env_var)
        if not value:
            continue
        parsed = urlparse(value)
        if parsed.hostname:
            hosts.add(parsed.hostname.lower())
    return hosts


def _verify_host(url: str) -> None:
    host = (urlparse(url).hostname or "").lower()
    if host in _allowed_hosts() or host.endswith(_ALLOWED_SUFFIXES):
        return
    EGRESS_FAILURES.labels(reason="disallowed_host").inc()
    raise RuntimeError(f"Egress to host '{host}' is not permitted")


def secure_request(method: str, url: str, **kwargs: Any) -> requests.Response:
    """Dispatch a HTTP request enforcing TLS verification and the allowlist."""

    _verify_host(url)
    kwargs.setdefault("timeout", 10)
    kwargs.setdefault("verify", True)
    try:
        response = requests.request(method=method, url=url, **kwargs)
        response.raise_for_status()
        return response
    except requests.exceptions.SSLError:
        EGRESS_FAILURES.labels(reason="tls_failure").inc()
        raise
    except requests.exceptions.Timeout:
        EGRESS_FAILURES.labels(reason="timeout").inc()
        raise
    except requests.exceptions.RequestException:
        EGRESS_FAILURES.labels(reason="network_failure").inc()
        raise


def secure_post(url: str, **kwargs: Any) -> requests.Response:
    return secure_request("POST", url, **kwargs)


__all__ = ["secure_post", "secure_request", "EGRESS_FAILURES"]
