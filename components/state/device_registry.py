# components/state/device_registry.py
"""
Device registry for the live simulation server.

Owns every SimulatedDevice. Sessions and the simulation orchestrator only
look devices up by id. Refresh pulls the authoritative device list from
upstream; lookups are synchronous and never wait on a refresh.
"""

import asyncio
from typing import Any, Awaitable, Callable, Protocol

from components.catalog.models import CatalogDevice
from components.devices.simulated_device import SimulatedDevice, SimulationSettings
from components.observability.logging_system import get_logger

logger = get_logger(__name__)

DeviceListener = Callable[[str, str, dict[str, Any], set[str]], Awaitable[None]]


class DeviceSource(Protocol):
    async def get_devices(self) -> list[CatalogDevice]: ...


class DeviceRegistry:
    """
    Registry of simulated devices.

    All mutations are protected by an async lock. Device events are fanned
    out to registered listeners (session routing, rules engine).

    Example:
        >>> registry = DeviceRegistry(StaticCatalogProvider.from_config(config))
        >>> await registry.refresh()
        >>> device = registry.get_one("thermostat-lobby")
    """

    def __init__(
        self,
        source: DeviceSource,
        settings: SimulationSettings | None = None,
    ):
        self.source = source
        self.settings = settings or SimulationSettings()
        self.devices: dict[str, SimulatedDevice] = {}
        self.refresh_count = 0
        self._listeners: list[DeviceListener] = []
        self._lock = asyncio.Lock()

    # ----------------------------------------------------------------
    # Refresh from upstream
    # ----------------------------------------------------------------

    async def refresh(self) -> int:
        """Synchronise the device set with upstream.

        New devices are created, existing ones get updated catalog data.
        Devices missing upstream are dropped only if nothing is bound to
        them and they are not simulating.

        Returns:
            Number of devices in the registry after refresh

        Raises:
            Whatever the upstream source raises
        """
        catalog = await self.source.get_devices()

        async with self._lock:
            seen = set()
            for entry in catalog:
                seen.add(entry.device_id)
                existing = self.devices.get(entry.device_id)
                if existing is None:
                    self.register_device(entry)
                else:
                    existing.update_catalog(entry)

            for device_id in list(self.devices):
                device = self.devices[device_id]
                if device_id in seen:
                    continue
                if device.sessions or device.simulating:
                    logger.warning(
                        f"Device {device_id} missing upstream but still in use, keeping"
                    )
                    continue
                del self.devices[device_id]
                logger.info(f"Removed device no longer in catalog: {device_id}")

            self.refresh_count += 1
            logger.debug(f"Registry refreshed: {len(self.devices)} devices")
            return len(self.devices)

    def register_device(self, entry: CatalogDevice) -> SimulatedDevice:
        """Create and register a device (replacing any with the same id).

        Note: Callers inside refresh() already hold self._lock
        """
        device = SimulatedDevice(entry, publish=self.dispatch, settings=self.settings)
        if entry.device_id in self.devices:
            logger.warning(f"Device {entry.device_id} already registered, replaced")
        self.devices[entry.device_id] = device
        logger.info(f"Registered device: {entry.device_id} ({entry.name})")
        return device

    # ----------------------------------------------------------------
    # Lookups
    # ----------------------------------------------------------------

    def get_one(self, device_id: str) -> SimulatedDevice | None:
        return self.devices.get(device_id)

    def get_all(self) -> dict[str, SimulatedDevice]:
        """Snapshot of all devices (safe to iterate while devices change)."""
        return self.devices.copy()

    # ----------------------------------------------------------------
    # Device events
    # ----------------------------------------------------------------

    def add_listener(self, listener: DeviceListener) -> None:
        self._listeners.append(listener)

    async def dispatch(
        self, device_id: str, event: str, payload: dict[str, Any], session_ids: set[str]
    ) -> None:
        """Fan a device event out to every listener.

        A failing listener is logged and does not stop the others.
        """
        for listener in list(self._listeners):
            try:
                await listener(device_id, event, payload, session_ids)
            except Exception:
                logger.exception(f"Device listener failed for {device_id}:{event}")

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    def get_summary(self) -> dict[str, Any]:
        return {
            "total": len(self.devices),
            "healthy": sum(1 for d in self.devices.values() if d.ok),
            "simulating": sum(1 for d in self.devices.values() if d.simulating),
            "bound": sum(1 for d in self.devices.values() if d.sessions),
            "refresh_count": self.refresh_count,
        }
