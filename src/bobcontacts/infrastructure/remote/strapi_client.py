"""httpx client for the Strapi-style REST backend (bearer token auth)."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from bobcontacts.application.ports import TokenProvider
from bobcontacts.application.remote import (
    RemoteAccount,
    RemoteContact,
    RemoteInvitation,
    RemotePage,
)
from bobcontacts.errors import AuthenticationError, RemoteConflictError, RemoteRequestError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20.0


class StaticTokenProvider:
    """TokenProvider returning a fixed token (configured or uploaded by the caller)."""

    def __init__(self, token: str | None) -> None:
        self._token = (token or "").strip() or None

    async def get_token(self) -> str | None:
        return self._token


class StrapiClient:
    """RemoteBackend implementation over httpx.AsyncClient.

    Records travel inside Strapi's ``{"data": ...}`` envelope and listings
    carry ``meta.pagination``. 401/403 raise AuthenticationError, 409 raises
    RemoteConflictError and any other non-2xx raises RemoteRequestError.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._tokens = token_provider
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def _headers(self) -> dict[str, str]:
        token = await self._tokens.get_token()
        if not token:
            raise AuthenticationError("No authentication token available")
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        headers = await self._headers()
        try:
            response = await self._http_client.request(
                method, f"{self._base_url}{path}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            raise RemoteRequestError(status_code=0, message=f"{type(exc).__name__}: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Backend rejected credentials ({response.status_code}): {_safe_error_message(response)}"
            )
        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code == 409:
            raise RemoteConflictError(_safe_error_message(response))
        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteRequestError(
                status_code=response.status_code,
                message=_safe_error_message(response),
            )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteRequestError(
                status_code=response.status_code,
                message="Invalid JSON payload from backend",
            ) from exc

    # Contacts

    async def list_contacts(self, *, page: int, page_size: int) -> RemotePage:
        payload = await self._request(
            "GET",
            "/contacts",
            params={"pagination[page]": page, "pagination[pageSize]": page_size},
        )
        return _parse_page(payload, RemoteContact, page=page, page_size=page_size)

    async def find_contacts_by_phone(self, phone: str) -> list[RemoteContact]:
        payload = await self._request("GET", "/contacts", params={"filters[telephone][$eq]": phone})
        return _parse_items(payload, RemoteContact)

    async def search_contacts_by_name(self, name: str) -> list[RemoteContact]:
        payload = await self._request("GET", "/contacts", params={"filters[lastName][$containsi]": name})
        return _parse_items(payload, RemoteContact)

    async def create_contact(
        self,
        *,
        first_name: str,
        last_name: str,
        telephone: str,
        email: str | None = None,
    ) -> RemoteContact:
        data: dict[str, Any] = {"firstName": first_name, "lastName": last_name, "telephone": telephone}
        if email:
            data["email"] = email
        payload = await self._request("POST", "/contacts", json={"data": data})
        return _parse_record(payload, RemoteContact)

    async def delete_contact(self, remote_id: str) -> bool:
        payload = await self._request("DELETE", f"/contacts/{remote_id}", allow_not_found=True)
        if payload is None:
            logger.info("Remote contact %s already gone", remote_id)
            return False
        return True

    # Users

    async def list_users(self, *, page: int, page_size: int) -> RemotePage:
        payload = await self._request(
            "GET",
            "/users",
            params={"pagination[page]": page, "pagination[pageSize]": page_size},
        )
        return _parse_page(payload, RemoteAccount, page=page, page_size=page_size)

    # Invitations

    async def create_invitation(
        self,
        *,
        telephone: str,
        name: str,
        channel: str,
        message: str | None = None,
    ) -> RemoteInvitation:
        data: dict[str, Any] = {"telephone": telephone, "name": name, "channel": channel}
        if message:
            data["message"] = message
        payload = await self._request("POST", "/invitations", json={"data": data})
        return _parse_record(payload, RemoteInvitation)

    async def delete_invitation(self, invitation_id: str) -> bool:
        payload = await self._request("DELETE", f"/invitations/{invitation_id}", allow_not_found=True)
        return payload is not None

    async def list_invitations(self) -> list[RemoteInvitation]:
        payload = await self._request("GET", "/invitations")
        return _parse_items(payload, RemoteInvitation)


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _parse_items(payload: Any, model: type) -> list[Any]:
    raw = _unwrap(payload)
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if isinstance(entry, dict):
            # Strapi v4 nests fields under "attributes".
            if isinstance(entry.get("attributes"), dict):
                entry = {"id": entry.get("id"), **entry["attributes"]}
            try:
                items.append(model.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed %s record %r: %d validation error(s)",
                    model.__name__,
                    entry.get("id"),
                    exc.error_count(),
                )
    return items


def _parse_record(payload: Any, model: type) -> Any:
    try:
        return model.model_validate(_unwrap(payload) or {})
    except ValidationError as exc:
        raise RemoteRequestError(
            status_code=200,
            message=f"Invalid {model.__name__} payload from backend: {exc.error_count()} validation error(s)",
        ) from exc


def _parse_page(payload: Any, model: type, *, page: int, page_size: int) -> RemotePage:
    items = _parse_items(payload, model)
    pagination: dict[str, Any] = {}
    if isinstance(payload, dict):
        meta = payload.get("meta")
        if isinstance(meta, dict) and isinstance(meta.get("pagination"), dict):
            pagination = meta["pagination"]
    return RemotePage(
        items=items,
        page=int(pagination.get("page") or page),
        page_size=int(pagination.get("pageSize") or page_size),
        page_count=pagination.get("pageCount"),
        total=pagination.get("total"),
    )


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"
