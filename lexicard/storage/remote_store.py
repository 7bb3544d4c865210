"""
Remote replica client for a per-user document store.

Handles HTTP communication with the account-side backup of a user's lists,
settings and daily counters. Every request is bounded by a timeout and
retried with exponential backoff on timeouts, transport errors and 5xx
responses. 4xx responses are never retried.

Layout (relative to the API base URL):
    GET    /users/{uid}/lists
    DELETE /users/{uid}/lists/{id}
    POST   /users/{uid}/batch
    GET    /users/{uid}/settings/user      (also PUT, DELETE)
    GET    /users/{uid}/dailyStats?start=&end=
    PUT    /users/{uid}/dailyStats/{date}
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger

from lexicard.core.errors import (
    AuthStateError,
    ReplicaError,
    ResourceNotFoundError,
    TransientIOError,
)
from lexicard.core.models import DailyStats, UserSettings, VocabList, load_records


class RemoteReplicaStore:
    """HTTP replica bound to one signed-in user."""

    def __init__(
        self,
        api_url: str,
        user_id: str,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        backoff_seconds: float = 0.5,
        batch_size: int = 500,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize remote store.

        Args:
            api_url: Base URL of the document store
            user_id: Signed-in user whose namespace is addressed
            token: Bearer token (optional)
            timeout_seconds: Timeout for every request
            retry_attempts: Attempts on retryable failures
            backoff_seconds: Base delay, doubled after every failed attempt
            batch_size: Maximum documents per batched write
            transport: Custom transport (tests use httpx.MockTransport)
        """
        if not user_id:
            raise AuthStateError("Remote replica requires a user id")
        self.api_url = api_url.rstrip("/")
        self.user_id = user_id
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds
        self.batch_size = max(1, batch_size)

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=f"{self.api_url}/users/{user_id}",
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, user_id: str) -> RemoteReplicaStore:
        """Build a store for ``user_id`` from application settings."""
        if not settings.remote_api_url:
            raise AuthStateError("No remote document store configured (REMOTE_API_URL)")
        return cls(
            api_url=settings.remote_api_url,
            user_id=user_id,
            token=settings.remote_api_token,
            timeout_seconds=settings.remote_timeout_seconds,
            retry_attempts=settings.remote_retry_attempts,
            backoff_seconds=settings.remote_retry_backoff_seconds,
            batch_size=settings.remote_batch_size,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request with retry logic.

        Raises:
            ResourceNotFoundError: On 404
            AuthStateError: On 401/403
            ReplicaError: On any other 4xx
            TransientIOError: When all attempts fail on timeouts, transport errors or 5xx
        """
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await self.client.request(method, path, **kwargs)
                response.raise_for_status()
                return response

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    "Remote timeout on {} {} (attempt {}/{})",
                    method,
                    path,
                    attempt + 1,
                    self.retry_attempts,
                )

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 404:
                    raise ResourceNotFoundError(f"{method} {path}: not found") from e
                if status in (401, 403):
                    raise AuthStateError(f"{method} {path}: not authorized ({status})") from e
                if status < 500:
                    logger.error("Remote client error {} on {} {}", status, method, path)
                    raise ReplicaError(f"{method} {path}: client error {status}") from e
                last_error = e
                logger.warning(
                    "Remote server error {} on {} {} (attempt {}/{})",
                    status,
                    method,
                    path,
                    attempt + 1,
                    self.retry_attempts,
                )

            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Remote request error on {} {} (attempt {}/{}): {}",
                    method,
                    path,
                    attempt + 1,
                    self.retry_attempts,
                    e,
                )

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.backoff_seconds * (2**attempt))

        raise TransientIOError(
            f"{method} {path} failed after {self.retry_attempts} attempts: {last_error}"
        ) from last_error

    async def _get_documents(self, path: str, **kwargs: Any) -> list[dict[str, Any]]:
        """Fetch a collection; the document id overrides any id in the body."""
        payload = (await self._request("GET", path, **kwargs)).json()
        documents = payload.get("documents", []) if isinstance(payload, dict) else []
        result = []
        for document in documents:
            if not isinstance(document, dict):
                continue
            data = document.get("data")
            if isinstance(data, dict):
                result.append({**data, "id": document.get("id", data.get("id"))})
        return result

    async def _batch(self, operations: list[dict[str, Any]]) -> None:
        for start in range(0, len(operations), self.batch_size):
            chunk = operations[start : start + self.batch_size]
            await self._request("POST", "/batch", json={"operations": chunk})

    # =========================================================================
    # Lists
    # =========================================================================

    async def load_lists(self) -> list[VocabList]:
        documents = await self._get_documents("/lists")
        return load_records(VocabList, documents, source=f"remote replica ({self.user_id})")

    async def save_lists(self, lists: Sequence[VocabList]) -> None:
        """Write the collection with chunked batched sets."""
        if not lists:
            return
        operations = [
            {"op": "set", "path": f"lists/{vocab_list.id}", "data": vocab_list.to_document()}
            for vocab_list in lists
        ]
        await self._batch(operations)
        logger.debug("Pushed {} lists to remote for {}", len(lists), self.user_id)

    async def save_list(self, vocab_list: VocabList) -> None:
        await self.save_lists([vocab_list])

    async def delete_list(self, list_id: str) -> None:
        try:
            await self._request("DELETE", f"/lists/{list_id}")
        except ResourceNotFoundError:
            logger.debug("Remote list {} already absent", list_id)

    # =========================================================================
    # Settings
    # =========================================================================

    async def load_settings(self) -> UserSettings | None:
        try:
            payload = (await self._request("GET", "/settings/user")).json()
        except ResourceNotFoundError:
            return None
        data = payload.get("data", payload) if isinstance(payload, dict) else None
        records = load_records(UserSettings, [data], source=f"remote replica ({self.user_id})")
        # A stray remote secret is never trusted
        return records[0].without_secret() if records else None

    async def save_settings(self, settings: UserSettings) -> None:
        document = settings.without_secret().to_document()
        document.pop("apiKey", None)
        await self._request("PUT", "/settings/user", json={"data": document})

    # =========================================================================
    # Daily Stats
    # =========================================================================

    async def load_daily_stats(self, start: str, end: str) -> list[DailyStats]:
        documents = await self._get_documents("/dailyStats", params={"start": start, "end": end})
        for document in documents:
            document.setdefault("date", document.get("id"))
        return load_records(DailyStats, documents, source=f"remote replica ({self.user_id})")

    async def save_daily_stats(self, stats: Sequence[DailyStats]) -> None:
        for day in stats:
            await self._request("PUT", f"/dailyStats/{day.date}", json={"data": day.to_document()})

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def clear_all(self) -> None:
        """Delete every list and the settings document."""
        lists = await self.load_lists()
        if lists:
            await self._batch(
                [{"op": "delete", "path": f"lists/{vocab_list.id}"} for vocab_list in lists]
            )
        try:
            await self._request("DELETE", "/settings/user")
        except ResourceNotFoundError:
            pass
        logger.info("Remote replica cleared for {}", self.user_id)
