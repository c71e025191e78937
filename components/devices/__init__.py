# components/devices/__init__.py
"""Device implementations for the live simulation server."""

from components.devices.simulated_device import SimulatedDevice, SimulationSettings

__all__ = [
    "SimulatedDevice",
    "SimulationSettings",
]
