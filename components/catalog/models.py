# components/catalog/models.py
"""
Catalog data model.

Devices and end users as published by the external catalog, plus the
per-connection snapshot that carries them through the sync pipeline.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class CatalogDevice:
    """Authoritative description of a device.

    Attributes:
        device_id: Unique device identifier
        name: Human-readable name
        device_type: Device classification (thermostat, ...)
        serial: Hardware serial number
        location: Installation location
        thresholds: Rule thresholds (temperature_max, humidity_max, ...)
        metadata: Any additional catalog fields
    """

    device_id: str
    name: str = ""
    device_type: str = "thermostat"
    serial: str = ""
    location: str = ""
    thresholds: dict[str, float] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CatalogDevice":
        """Build from a catalog/config record.

        Raises:
            ValueError: If the record has no device id
        """
        device_id = data.get("id") or data.get("deviceId") or data.get("device_id")
        if not device_id or not isinstance(device_id, str):
            raise ValueError(f"Catalog device record has no id: {data!r}")

        known = {"id", "deviceId", "device_id", "name", "type", "serial", "location", "thresholds"}
        return cls(
            device_id=device_id,
            name=data.get("name") or device_id,
            device_type=data.get("type", "thermostat"),
            serial=data.get("serial", ""),
            location=data.get("location", ""),
            thresholds=dict(data.get("thresholds") or {}),
            metadata={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.device_id,
            "name": self.name,
            "type": self.device_type,
            "serial": self.serial,
            "location": self.location,
            "thresholds": dict(self.thresholds),
            **self.metadata,
        }


@dataclass
class EndUser:
    """Catalog end user (mirrored into the CRM as a contact)."""

    user_id: str
    name: str = ""
    email: str = ""
    device_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EndUser":
        user_id = data.get("id") or data.get("userId") or data.get("user_id")
        if not user_id or not isinstance(user_id, str):
            raise ValueError(f"Catalog end user record has no id: {data!r}")

        return cls(
            user_id=user_id,
            name=data.get("name", ""),
            email=data.get("email", ""),
            device_ids=list(data.get("device_ids") or data.get("devices") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "device_ids": list(self.device_ids),
        }


@dataclass
class CatalogSnapshot:
    """Devices and end users fetched for one connection event."""

    devices: list[CatalogDevice]
    end_users: list[EndUser]
