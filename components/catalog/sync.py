# components/catalog/sync.py
"""
Catalog sync pipeline.

Runs once per connection event, detached from the session that triggered
it. Fetches devices and end users concurrently, then feeds the rules
engine and the CRM mirror as two independent branches. Every failure is
logged and absorbed; nothing propagates back to the session manager.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from components.catalog.models import CatalogDevice, CatalogSnapshot, EndUser
from components.errors import CatalogUnavailableError
from components.observability.logging_system import (
    EventCategory,
    EventSeverity,
    get_logger,
)

logger = get_logger(__name__)


class CatalogProvider(Protocol):
    async def get_devices(self) -> list[CatalogDevice]: ...

    async def get_end_users(self) -> list[EndUser]: ...


class CrmMirror(Protocol):
    async def add_contacts(self, end_users: list[EndUser]) -> Any: ...

    async def add_assets(self, devices: list[CatalogDevice]) -> Any: ...


class CatalogSync:
    """
    Per-connection catalog fetch feeding the rules engine and CRM.

    Example:
        >>> sync = CatalogSync(provider, rules, crm)
        >>> snapshot = await sync.run(session_id="abc")
    """

    def __init__(
        self,
        provider: CatalogProvider,
        rules: Any,
        crm: CrmMirror | None = None,
        timeout: float | None = 10.0,
    ):
        """
        Args:
            provider: Catalog provider (get_devices / get_end_users)
            rules: Rules engine exposing update(devices)
            crm: Optional CRM mirror; None disables the CRM branch
            timeout: Bound on the joint catalog fetch in seconds
        """
        self.provider = provider
        self.rules = rules
        self.crm = crm
        self.timeout = timeout
        self.runs = 0
        self.failures = 0

    async def fetch(self) -> CatalogSnapshot:
        """Fetch devices and end users concurrently.

        Raises:
            CatalogUnavailableError: If either fetch fails or times out
        """
        try:
            devices, end_users = await asyncio.wait_for(
                asyncio.gather(self.provider.get_devices(), self.provider.get_end_users()),
                timeout=self.timeout,
            )
        except CatalogUnavailableError:
            raise
        except asyncio.TimeoutError as e:
            raise CatalogUnavailableError(f"Catalog fetch timed out after {self.timeout}s") from e
        except Exception as e:
            raise CatalogUnavailableError(f"Catalog fetch failed: {e}") from e

        return CatalogSnapshot(devices=list(devices), end_users=list(end_users))

    async def run(self, session_id: str = "") -> CatalogSnapshot | None:
        """Execute the pipeline once.

        Returns:
            The snapshot that was distributed, or None if the fetch failed
        """
        self.runs += 1
        try:
            snapshot = await self.fetch()
        except CatalogUnavailableError as e:
            self.failures += 1
            await logger.log_event(
                EventSeverity.ERROR,
                EventCategory.CATALOG,
                f"Catalog sync skipped: {e}",
                session=session_id,
            )
            return None

        logger.debug(
            f"Catalog fetched: {len(snapshot.devices)} devices, "
            f"{len(snapshot.end_users)} end users"
        )

        await asyncio.gather(
            self._update_rules(snapshot, session_id),
            self._mirror_crm(snapshot, session_id),
        )
        return snapshot

    async def _update_rules(self, snapshot: CatalogSnapshot, session_id: str) -> None:
        try:
            self.rules.update(snapshot.devices)
        except Exception as e:
            self.failures += 1
            await logger.log_event(
                EventSeverity.ERROR,
                EventCategory.CATALOG,
                f"Rules engine update failed: {e}",
                session=session_id,
            )

    async def _mirror_crm(self, snapshot: CatalogSnapshot, session_id: str) -> None:
        if self.crm is None:
            logger.debug("CRM mirror not configured, skipping")
            return

        # Contacts and assets are upserted independently
        results = await asyncio.gather(
            self.crm.add_contacts(snapshot.end_users),
            self.crm.add_assets(snapshot.devices),
            return_exceptions=True,
        )
        for kind, result in zip(("contacts", "assets"), results):
            if isinstance(result, Exception):
                self.failures += 1
                await logger.log_event(
                    EventSeverity.ERROR,
                    EventCategory.CATALOG,
                    f"CRM {kind} upsert failed: {result}",
                    session=session_id,
                )
