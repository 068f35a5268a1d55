"""HTTP client for the remote step sync endpoints.

POSTs a batch of at most 31 day entries to ``/api/v1/steps/sync`` (and
DELETEs a source's entries when tracking is turned off), mapping every
transport or HTTP failure onto the sync error taxonomy:

    timeout / connection error / 429 / 5xx  → TransientSyncError
    401 / 403                               → GatewayAuthError
    any other 4xx                           → GatewayRejectedError
    2xx with an unreadable body             → PartialBatchError
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from src.step_sync.base import StepDayEntry, SyncBatchResult, SyncGateway
from src.step_sync.errors import (
    GatewayAuthError,
    GatewayRejectedError,
    PartialBatchError,
    TransientSyncError,
)

logger = logging.getLogger("stepper.sync.gateway")

SYNC_PATH = "/api/v1/steps/sync"
DELETE_SOURCE_PATH = "/api/v1/steps/source/{source}"

#: Per-call entry limit enforced by the sync endpoint.
MAX_ENTRIES_PER_CALL = 31


class HttpSyncGateway(SyncGateway):
    """SyncGateway backed by the Stepper API.

    Args:
        base_url:     API root, e.g. ``https://api.stepper.app``.
        access_token: Bearer token of the signed-in user.
        timeout:      Seconds before a call is abandoned.
        http_client:  Optional pre-configured httpx client (for testing).
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._timeout = timeout
        self._http_client = http_client

    async def sync_batch(self, entries: list[StepDayEntry]) -> SyncBatchResult:
        if not entries:
            return SyncBatchResult()
        if len(entries) > MAX_ENTRIES_PER_CALL:
            raise ValueError(
                f"At most {MAX_ENTRIES_PER_CALL} entries per call, got {len(entries)}"
            )

        body = {"entries": [e.to_wire() for e in entries]}
        response = await self._request("POST", SYNC_PATH, body)
        self._raise_for_status(response)

        try:
            data = response.json()
            result = SyncBatchResult(
                created=int(data.get("created", 0)),
                updated=int(data.get("updated", 0)),
                total=int(data.get("total", 0)),
                errors=[str(e) for e in data.get("errors") or []],
            )
        except (ValueError, TypeError, AttributeError) as exc:
            raise PartialBatchError(f"Unreadable sync response: {exc}") from exc

        logger.debug(
            "Synced %d entries: created=%d updated=%d errors=%d",
            len(entries), result.created, result.updated, len(result.errors),
        )
        return result

    async def delete_by_source(self, source: str) -> int:
        """Delete every remote entry synced from ``source``.

        Returns:
            Number of entries the server removed.
        """
        if not source.strip():
            raise ValueError("source must not be empty")

        path = DELETE_SOURCE_PATH.format(source=quote(source, safe=""))
        response = await self._request("DELETE", path)
        self._raise_for_status(response)

        try:
            deleted = int(response.json()["deletedCount"])
        except (ValueError, TypeError, KeyError) as exc:
            raise PartialBatchError(f"Unreadable delete response: {exc}") from exc

        logger.info("Deleted %d remote step entries for source %r", deleted, source)
        return deleted

    async def _request(self, method: str, path: str, body: dict | None = None) -> httpx.Response:
        url = self._base_url + path
        headers = {"Authorization": f"Bearer {self._access_token}"}
        try:
            if self._http_client:
                return await self._http_client.request(
                    method, url, json=body, headers=headers, timeout=self._timeout
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(method, url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientSyncError(f"{method} {path} timed out after {self._timeout}s") from exc
        except httpx.TransportError as exc:
            raise TransientSyncError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = response.text[:200]
        if status in (401, 403):
            raise GatewayAuthError(f"Sync endpoint refused credentials ({status})")
        if status == 429 or status >= 500:
            raise TransientSyncError(f"Sync endpoint returned {status}: {detail}")
        raise GatewayRejectedError(f"Sync endpoint rejected request ({status}): {detail}")
