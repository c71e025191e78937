# components/errors.py
"""
Error taxonomy for the live device simulation server.

- Validation: malformed inbound command payloads
- Unavailable: registry refresh or catalog/CRM failures
"""


class LiveSimError(Exception):
    """Base class for all live simulation errors."""

    error_type = "internal"

    def to_payload(self) -> dict[str, str]:
        """Serialise for delivery to a single session."""
        return {"type": self.error_type, "message": str(self)}


class CommandValidationError(LiveSimError, ValueError):
    """Inbound command payload is malformed."""

    error_type = "validation"


class RegistryUnavailableError(LiveSimError):
    """Device registry refresh failed or timed out."""

    error_type = "registry_unavailable"


class CatalogUnavailableError(LiveSimError):
    """Catalog provider or CRM mirror could not be reached."""

    error_type = "catalog_unavailable"
