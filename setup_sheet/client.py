from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import anyio
import httpx

from setup_sheet.errors import (
    AuthenticationError,
    ConflictError,
    DuplicateNameError,
    NotFoundError,
    PayloadTooLargeError,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = os.environ.get("SETUP_SHEET_API_URL", "http://localhost:8000")
REQUEST_TIMEOUT_SECONDS = 60.0
PAYLOAD_TOO_LARGE_MESSAGE = "The data is too large to save. Please try with fewer employees or positions."
TEMPLATES_PATH = "/api/setup-sheet-templates"
WEEKLY_SETUPS_PATH = "/api/weekly-setups"

_INVALID_JSON = object()


class SessionStorage:
    """Holds the signed-in user's bearer token for the lifetime of a session."""

    def __init__(self, token: Optional[str] = None) -> None:
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class SetupSheetClient:
    """Async client for the setup sheet persistence API.

    Every call carries the bearer token from ``session_storage`` and is bounded by
    a client-side timeout. Failures surface as ``setup_sheet.errors`` types that
    carry the server's message when the body has one.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        session_storage: Optional[SessionStorage] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.session_storage = session_storage or SessionStorage()
        self.timeout = timeout
        self._http = httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout), transport=transport)

    async def __aenter__(self) -> "SetupSheetClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -----------------------------------------------------------------------
    # Templates

    async def list_templates(self) -> List[Dict[str, Any]]:
        return await self._request("GET", TEMPLATES_PATH, fallback="Failed to fetch templates")

    async def get_template(self, template_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{TEMPLATES_PATH}/{template_id}", fallback="Failed to fetch template")

    async def create_template(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", TEMPLATES_PATH, json=payload, fallback="Failed to create template")

    async def update_template(self, template_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"{TEMPLATES_PATH}/{template_id}", json=payload, fallback="Failed to update template"
        )

    async def delete_template(self, template_id: str) -> None:
        await self._request("DELETE", f"{TEMPLATES_PATH}/{template_id}", fallback="Failed to delete template")

    # -----------------------------------------------------------------------
    # Weekly setups

    async def list_weekly_setups(self) -> List[Dict[str, Any]]:
        return await self._request("GET", WEEKLY_SETUPS_PATH, fallback="Failed to fetch weekly setups")

    async def get_weekly_setup(self, setup_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{WEEKLY_SETUPS_PATH}/{setup_id}", fallback="Failed to fetch weekly setup")

    async def create_weekly_setup(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", WEEKLY_SETUPS_PATH, json=payload, fallback="Failed to create weekly setup")

    async def update_weekly_setup(self, setup_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"{WEEKLY_SETUPS_PATH}/{setup_id}", json=payload, fallback="Failed to update weekly setup"
        )

    async def delete_weekly_setup(self, setup_id: str) -> None:
        await self._request("DELETE", f"{WEEKLY_SETUPS_PATH}/{setup_id}", fallback="Failed to delete weekly setup")

    # -----------------------------------------------------------------------

    async def _request(self, method: str, path: str, *, json: Any = None, fallback: str) -> Any:
        token = self.session_storage.get_token()
        if not token:
            raise AuthenticationError("No authentication token found")
        headers = {"Authorization": f"Bearer {token}"}
        logger.debug("%s %s", method, path)
        try:
            # One deadline for the whole exchange; httpx limits each phase on its own.
            with anyio.fail_after(self.timeout):
                response = await self._http.request(method, path, json=json, headers=headers)
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise TransportError(f"Request timed out after {self.timeout:g} seconds") from exc
        except httpx.HTTPError as exc:
            raise TransportError("Network error - no response received") from exc

        data = _decode(response)
        if response.is_success:
            if data is _INVALID_JSON:
                raise TransportError(
                    f"Invalid JSON response: {response.text[:100]}...", status_code=response.status_code
                )
            return data
        raise _error_for(response, data, fallback)


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return _INVALID_JSON


def _error_for(response: httpx.Response, data: Any, fallback: str) -> Exception:
    status = response.status_code
    if status == 413:
        return PayloadTooLargeError(PAYLOAD_TOO_LARGE_MESSAGE, status_code=status)
    if isinstance(data, dict):
        message = data.get("message") or data.get("error") or data.get("detail") or fallback
        if not isinstance(message, str):
            message = str(message)
    else:
        message = f"Server error: {status} {response.reason_phrase}".rstrip()
    if status == 400 and isinstance(data, dict) and str(data.get("code") or "").startswith("DUPLICATE_"):
        return DuplicateNameError(message, code=data["code"])
    if status == 401:
        return AuthenticationError(message, status_code=status)
    if status == 404:
        return NotFoundError(message, status_code=status)
    if status == 409:
        return ConflictError(message, status_code=status)
    return TransportError(message, status_code=status)
