# components/catalog/rules_engine.py
"""
Threshold rules engine.

Rules come from the device catalog (per-device thresholds) and are
evaluated against every reading a simulated device publishes.
"""

from dataclasses import dataclass
from typing import Any

from components.catalog.models import CatalogDevice
from components.observability.logging_system import AlarmPriority, get_logger

logger = get_logger(__name__)

# Threshold keys are "<reading>_max" or "<reading>_min"
_SUFFIXES = ("_max", "_min")


@dataclass
class RuleViolation:
    """A reading outside its configured threshold."""

    device_id: str
    reading: str
    value: float
    limit: float
    bound: str  # "max" or "min"

    def describe(self) -> str:
        comparator = ">" if self.bound == "max" else "<"
        return f"{self.reading}={self.value:.1f} {comparator} {self.limit:.1f}"


class RulesEngine:
    """
    Per-device threshold rules.

    Example:
        >>> rules = RulesEngine()
        >>> rules.update([CatalogDevice("t1", thresholds={"temperature_max": 30})])
        >>> await rules.evaluate("t1", {"temperature": 42.0})
        [RuleViolation(device_id='t1', reading='temperature', ...)]
    """

    def __init__(self):
        self._rules: dict[str, dict[str, float]] = {}
        self.update_count = 0

    def update(self, devices: list[CatalogDevice]) -> int:
        """Replace all rules from a device catalog.

        Args:
            devices: Catalog devices carrying thresholds

        Returns:
            Number of devices with at least one rule
        """
        rules: dict[str, dict[str, float]] = {}
        for device in devices:
            thresholds = {
                key: float(value)
                for key, value in device.thresholds.items()
                if key.endswith(_SUFFIXES) and isinstance(value, (int, float))
            }
            if thresholds:
                rules[device.device_id] = thresholds

        self._rules = rules
        self.update_count += 1
        logger.info(f"Rules engine updated: {len(rules)} devices with thresholds")
        return len(rules)

    def rules_for(self, device_id: str) -> dict[str, float]:
        return dict(self._rules.get(device_id, {}))

    async def evaluate(self, device_id: str, readings: dict[str, Any]) -> list[RuleViolation]:
        """Check readings against the device's thresholds.

        Each violation is logged as an alarm.
        """
        violations = []
        for key, limit in self._rules.get(device_id, {}).items():
            reading, _, bound = key.rpartition("_")
            value = readings.get(reading)
            if not isinstance(value, (int, float)):
                continue
            if (bound == "max" and value > limit) or (bound == "min" and value < limit):
                violations.append(RuleViolation(device_id, reading, float(value), limit, bound))

        for violation in violations:
            await logger.log_alarm(
                f"Rule violated: {violation.describe()}",
                priority=AlarmPriority.HIGH,
                device=device_id,
                data={"reading": violation.reading, "value": violation.value, "limit": violation.limit},
            )

        return violations

    async def handle_device_event(
        self, device_id: str, event: str, payload: dict[str, Any], session_ids: set[str]
    ) -> None:
        """Device event listener: evaluate every published reading."""
        if event == "deviceState":
            await self.evaluate(device_id, payload.get("readings", {}))
