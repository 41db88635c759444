from __future__ import annotations

from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx


class SearchIndexError(RuntimeError):
    """Raised when an index operation fails for any reason other than a missing document."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


def create_search_http_client(*, base_url: str, timeout_s: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout_s))


class SearchIndexClient:
    """Per-document delete and create against one index. Never retries."""

    def __init__(self, *, client: httpx.AsyncClient, index: str) -> None:
        if not index:
            raise ValueError("index must not be empty")

        self._client = client
        self._index = index

    @property
    def index(self) -> str:
        return self._index

    async def delete_by_id(self, document_id: str) -> DeleteOutcome:
        response = await self._send("DELETE", document_id)
        if response.status_code == httpx.codes.NOT_FOUND:
            return DeleteOutcome.NOT_FOUND
        if response.is_success:
            return DeleteOutcome.DELETED
        raise SearchIndexError(
            f"Delete of {document_id!r} failed with status {response.status_code}: "
            f"{_response_reason(response)}",
            status_code=response.status_code,
        )

    async def create_with_id(self, document_id: str, document: dict[str, Any]) -> None:
        response = await self._send("POST", document_id, json=document)
        if not response.is_success:
            raise SearchIndexError(
                f"Create of {document_id!r} failed with status {response.status_code}: "
                f"{_response_reason(response)}",
                status_code=response.status_code,
            )

    async def _send(
        self,
        method: str,
        document_id: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        path = self._document_path(document_id)
        try:
            return await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise SearchIndexError(f"{method} {path} failed: {exc!r}") from exc

    def _document_path(self, document_id: str) -> str:
        return f"/{quote(self._index, safe='')}/_doc/{quote(document_id, safe='')}"


def _response_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("reason") or error.get("type") or error)
        if error is not None:
            return str(error)
    return str(body)[:200]
