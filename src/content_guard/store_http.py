"""REST-backed store — hands records to a remote datastore service.

Speaks a PostgREST-style dialect:

    POST   {base_url}/{collection}                          body: record
    GET    {base_url}/{collection}?organizationId=eq.<org>
    DELETE {base_url}/{collection}?timestamp=lt.<iso>&organizationId=eq.<org>

Every call is bounded by a short timeout.  Errors propagate as
httpx exceptions; the audit writer is the one that decides to swallow them.
"""

from __future__ import annotations
from typing import Any

import httpx


class HttpStore:
    """Durable store that lives on the other side of an HTTP API."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 2.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def create(self, collection: str, record: dict[str, Any]) -> None:
        resp = self._client.post(
            f"/{collection}",
            json=record,
            headers={"Prefer": "resolution=merge-duplicates"},
        )
        resp.raise_for_status()

    def list(self, collection: str, *, org_id: str | None = None) -> list[dict[str, Any]]:
        params = {"organizationId": f"eq.{org_id}"} if org_id is not None else None
        resp = self._client.get(f"/{collection}", params=params)
        resp.raise_for_status()
        return resp.json()

    def purge(self, collection: str, *, before: str, org_id: str | None = None,
              key: str = "timestamp") -> int:
        params = {key: f"lt.{before}"}
        if org_id is not None:
            params["organizationId"] = f"eq.{org_id}"
        resp = self._client.delete(
            f"/{collection}", params=params, headers={"Prefer": "return=representation"},
        )
        resp.raise_for_status()
        if not resp.content:
            return 0
        body = resp.json()
        return len(body) if isinstance(body, list) else 0

    def close(self) -> None:
        self._client.close()
