# components/catalog/clients.py
"""
Catalog provider and CRM mirror clients.

HTTP clients speak JSON over httpx. The static provider serves the fleet
configured in devices.yml/end_users.yml when no catalog URL is set.
"""

from __future__ import annotations

from typing import Any

import httpx

from components.catalog.models import CatalogDevice, EndUser
from components.errors import CatalogUnavailableError
from components.observability.logging_system import get_logger

logger = get_logger(__name__)


def _parse_list(payload: Any, key: str) -> list[dict[str, Any]]:
    """Accept either a bare JSON list or an envelope {key: [...]}."""
    if isinstance(payload, dict):
        payload = payload.get(key, [])
    if not isinstance(payload, list):
        raise CatalogUnavailableError(f"Unexpected catalog payload for '{key}'")
    return payload


class StaticCatalogProvider:
    """
    Offline catalog backed by configuration.

    Example:
        >>> provider = StaticCatalogProvider.from_config(config)
        >>> devices = await provider.get_devices()
    """

    def __init__(
        self,
        devices: list[CatalogDevice] | None = None,
        end_users: list[EndUser] | None = None,
    ):
        self.devices = list(devices or [])
        self.end_users = list(end_users or [])

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "StaticCatalogProvider":
        return cls(
            devices=[CatalogDevice.from_dict(d) for d in config.get("devices", [])],
            end_users=[EndUser.from_dict(u) for u in config.get("end_users", [])],
        )

    async def get_devices(self) -> list[CatalogDevice]:
        return list(self.devices)

    async def get_end_users(self) -> list[EndUser]:
        return list(self.end_users)


class HttpCatalogProvider:
    """
    Catalog provider over HTTP.

    GET {base_url}/devices and GET {base_url}/end-users, each returning a
    JSON list (or an envelope object keyed by "devices"/"end_users").
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def _get(self, path: str) -> Any:
        try:
            response = await self._client.get(path)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CatalogUnavailableError(f"GET {self.base_url}{path} failed: {e}") from e

    async def get_devices(self) -> list[CatalogDevice]:
        records = _parse_list(await self._get("/devices"), "devices")
        return [CatalogDevice.from_dict(r) for r in records]

    async def get_end_users(self) -> list[EndUser]:
        records = _parse_list(await self._get("/end-users"), "end_users")
        return [EndUser.from_dict(r) for r in records]

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpCrmMirror:
    """
    CRM mirror over HTTP.

    End users are upserted as contacts, devices as assets. The CRM is
    expected to treat the catalog id as the external key.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def _upsert(self, path: str, records: list[dict[str, Any]]) -> int:
        if not records:
            return 0
        try:
            response = await self._client.post(path, json={"records": records})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CatalogUnavailableError(f"POST {self.base_url}{path} failed: {e}") from e

        logger.debug(f"Upserted {len(records)} records to {path}")
        return len(records)

    async def add_contacts(self, end_users: list[EndUser]) -> int:
        return await self._upsert("/contacts", [u.to_dict() for u in end_users])

    async def add_assets(self, devices: list[CatalogDevice]) -> int:
        return await self._upsert("/assets", [d.to_dict() for d in devices])

    async def aclose(self) -> None:
        await self._client.aclose()
