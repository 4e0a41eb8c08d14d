"""
Client for the public applications REST endpoint, used as a fallback source and insert target
when a deployment has no relational store of its own.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from admitflow.core.exceptions import (
    NetworkUnavailable,
    SchemaRejection,
    ServiceError,
    UniqueConstraintConflict,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

APPLICATIONS_PATH = "/api/public/applications"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body.get("message") or body)
    return str(body)


def classify_http_error(response: httpx.Response) -> ServiceError:
    message = _error_message(response)
    code = response.status_code
    if code == 409:
        return UniqueConstraintConflict(message)
    if code == 400:
        return ValidationFailure(message)
    if code in (404, 405, 422):
        return SchemaRejection(message, details=message, code=str(code))
    if code >= 500:
        return NetworkUnavailable(f"Public API error {code}: {message}")
    return ServiceError(message, code)


class PublicApiClient:
    def __init__(self, base_url: Optional[str], timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._client: Optional[httpx.AsyncClient] = None
        if base_url:
            self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    @property
    def available(self) -> bool:
        return self._client is not None

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        if self._client is None:
            raise NetworkUnavailable("No public API configured")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise NetworkUnavailable(f"Public API unreachable: {e}") from e
        if response.is_error:
            raise classify_http_error(response)
        return response.json()

    async def list_applications(self) -> List[Dict[str, Any]]:
        body = await self._request("GET", APPLICATIONS_PATH)
        items = body.get("items") if isinstance(body, dict) else body
        return [i for i in items or [] if isinstance(i, dict)]

    async def create_application(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._request("POST", APPLICATIONS_PATH, json=payload)
        if isinstance(body, dict) and isinstance(body.get("item"), dict):
            return body["item"]
        return body if isinstance(body, dict) else {}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
