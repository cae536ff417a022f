# HTTP access to the marketplace API from the device

"""
Thin async wrapper over httpx that classifies failures for the sync engine:

- timeouts, connection errors, 408/429 and 5xx -> TransientSyncError
- any other 4xx -> PermanentSyncError (with status_code)
"""
import logging
from typing import Optional

import httpx

from twokaj.client.operations import Operation, OperationKind
from twokaj.core.errors import PermanentSyncError, TransientSyncError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429}


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


class ApiClient:
    """Async client for the twokaj API."""

    def __init__(self, base_url: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if self.access_token:
            headers.setdefault("Authorization", f"Bearer {self.access_token}")
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.debug("%s %s timed out", method, url)
            raise TransientSyncError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise TransientSyncError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS:
            raise TransientSyncError(f"{method} {url} returned {response.status_code}: {_detail(response)}")
        if response.status_code >= 400:
            raise PermanentSyncError(_detail(response), status_code=response.status_code)
        return response

    def remember_tokens(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")

    async def ping(self) -> bool:
        """Connectivity check against /health."""
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def sync_batch(self, batch: dict) -> dict:
        response = await self._request("POST", "/sync-batch", json=batch)
        return response.json()

    # ------------------------------------------------------------------
    # Direct CRUD
    # ------------------------------------------------------------------

    async def register(self, user: dict) -> dict:
        response = await self._request("POST", "/auth/register", json=user)
        return response.json()

    async def login(self, password: str, pseudo: Optional[str] = None,
                    email: Optional[str] = None) -> dict:
        body = {"password": password, "pseudo": pseudo, "email": email}
        response = await self._request("POST", "/auth/login", json=body)
        return response.json()

    async def create_listing(self, listing: dict) -> dict:
        response = await self._request("POST", "/listings", json=listing)
        return response.json()

    async def update_listing_status(self, listing_id: str, status: str) -> dict:
        response = await self._request("PATCH", f"/listings/{listing_id}/status", json={"status": status})
        return response.json()

    async def send_message(self, message: dict) -> dict:
        response = await self._request("POST", "/messages", json=message)
        return response.json()

    async def create_gallery_item(self, item: dict) -> dict:
        response = await self._request("POST", "/gallery", json=item)
        return response.json()

    async def list_listings(self, **filters) -> list:
        params = {k: v for k, v in filters.items() if v is not None}
        response = await self._request("GET", "/listings", params=params)
        return response.json()

    async def list_messages(self, user_id: str) -> list:
        response = await self._request("GET", "/messages", params={"user_id": user_id})
        return response.json()

    async def list_gallery(self) -> list:
        response = await self._request("GET", "/gallery")
        return response.json()

    async def submit(self, operation: Operation) -> dict:
        """
        Send an operation through its direct CRUD endpoint.

        Returns the authoritative entity.
        """
        payload = operation.payload
        if operation.kind == OperationKind.CREATE_USER:
            data = await self.register(payload)
            self.remember_tokens(data)
            return data["user"]
        if operation.kind == OperationKind.CREATE_AD:
            return await self.create_listing(payload)
        if operation.kind == OperationKind.SEND_MESSAGE:
            return await self.send_message(payload)
        if operation.kind == OperationKind.UPDATE_AD_STATUS:
            return await self.update_listing_status(payload["id"], payload["status"])
        return await self.create_gallery_item(payload)
