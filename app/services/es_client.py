"""
External search client pool.

Holds one `EsClient` (a thin JSON wrapper over `httpx.Client`) per
elasticsearch_connections row. Clients are built lazily on first use from
the connection row and cached for the life of the process.

Public API
----------
get_es_client(db, connection_id)             → EsClient
build_es_client(conn, transport=None)        → EsClient
register_es_client(connection_id, client)    → None   (runtime refresh / tests)
invalidate_es_client(connection_id)          → None

Every transport failure or non-2xx response is raised as
`ExternalSearchError` so callers handle a single exception type.
"""
from __future__ import annotations

import json
import threading
from typing import Any, Optional

import httpx
import structlog
from sqlalchemy.orm import Session

from app.core.errors import EsConnectionNotFoundError, ExternalSearchError
from app.models.elasticsearch_connection import ElasticsearchConnection

logger = structlog.get_logger(__name__)

_pool: dict[str, "EsClient"] = {}
_pool_lock = threading.Lock()


class EsClient:
    """JSON calls against one search cluster."""

    def __init__(self, connection_id: str, http: httpx.Client):
        self.connection_id = connection_id
        self._http = http

    def search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._post(f"/{index}/_search", body)

    def count(self, index: str, query: dict[str, Any]) -> int:
        data = self._post(f"/{index}/_count", {"query": query})
        value = data.get("count")
        return value if isinstance(value, int) else 0

    def close(self) -> None:
        self._http.close()

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._http.post(path, json=body)
        except httpx.HTTPError as exc:
            logger.error(
                "es_request_failed",
                connection_id=self.connection_id,
                path=path,
                error=str(exc),
            )
            raise ExternalSearchError(
                f"Search cluster request failed: {exc}", connection_id=self.connection_id
            ) from exc

        if response.status_code >= 400:
            logger.error(
                "es_request_rejected",
                connection_id=self.connection_id,
                path=path,
                status_code=response.status_code,
            )
            raise ExternalSearchError(
                f"Search cluster returned HTTP {response.status_code}.",
                connection_id=self.connection_id,
            )
        return response.json()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def _parse_credentials(raw: Optional[str]) -> dict[str, str]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("es_credentials_unparsable")
        return {}
    return value if isinstance(value, dict) else {}


def build_es_client(
    conn: ElasticsearchConnection,
    transport: Optional[httpx.BaseTransport] = None,
) -> EsClient:
    creds = _parse_credentials(conn.credentials)
    headers: dict[str, str] = {"Content-Type": "application/json"}
    auth = None

    if conn.auth_type == "basic" and creds.get("username") and creds.get("password"):
        auth = httpx.BasicAuth(creds["username"], creds["password"])
    elif conn.auth_type == "api_key" and creds.get("api_key"):
        headers["Authorization"] = f"ApiKey {creds['api_key']}"

    http = httpx.Client(
        base_url=conn.url.rstrip("/"),
        headers=headers,
        auth=auth,
        timeout=(conn.request_timeout_ms or 30000) / 1000,
        verify=conn.verify_tls,
        transport=transport,
    )
    return EsClient(conn.id, http)


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

def get_es_client(db: Session, connection_id: str) -> EsClient:
    """Return the pooled client for `connection_id`, building it on first use."""
    with _pool_lock:
        cached = _pool.get(connection_id)
    if cached is not None:
        return cached

    conn = db.get(ElasticsearchConnection, connection_id)
    if conn is None:
        raise EsConnectionNotFoundError(connection_id)

    client = build_es_client(conn)
    with _pool_lock:
        # Another thread may have raced us; keep the first.
        existing = _pool.setdefault(connection_id, client)
    if existing is not client:
        client.close()
    else:
        logger.info("es_client_created", connection_id=connection_id, url=conn.url)
    return existing


def register_es_client(connection_id: str, client: EsClient) -> None:
    with _pool_lock:
        previous = _pool.pop(connection_id, None)
        _pool[connection_id] = client
    if previous is not None and previous is not client:
        previous.close()


def invalidate_es_client(connection_id: str) -> None:
    """Drop the cached client so the next call re-reads the connection row."""
    with _pool_lock:
        previous = _pool.pop(connection_id, None)
    if previous is not None:
        previous.close()
