# config/config_loader.py
"""
Config loader module for modular YAML configuration.
"""

from pathlib import Path

import yaml

DEFAULT_SIMULATION = {
    "steps": 30,
    "tick_interval": 1.0,
    "seed": None,
    "forced_fault_offset": 45.0,
    "baseline": {"temperature": 21.0, "humidity": 40.0},
}

DEFAULT_CATALOG = {
    "base_url": None,
    "timeout": 10.0,
    "api_key": None,
}

DEFAULT_CRM = {
    "base_url": None,
    "timeout": 10.0,
    "api_key": None,
}

DEFAULT_SERVER = {
    "host": "127.0.0.1",
    "port": 8000,
    "refresh_timeout": 15.0,
    "log_dir": "logs",
    "log_level": "INFO",
}


class ConfigLoader:
    """Loads and merges modular configuration files."""

    def __init__(self, config_dir="config"):
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load_all(self):
        """Load all configuration files and merge them."""
        config = {}

        # Load devices config
        devices_path = self.config_dir / "devices.yml"
        if devices_path.exists():
            devices_data = self._read(devices_path)
            config["devices"] = devices_data.get("devices", []) or []
        else:
            config["devices"] = self._create_default_devices()
            self._save_devices(config["devices"])

        # Load end users config (offline catalog)
        end_users_path = self.config_dir / "end_users.yml"
        if end_users_path.exists():
            end_users_data = self._read(end_users_path)
            config["end_users"] = end_users_data.get("end_users", []) or []
        else:
            config["end_users"] = []

        # Load simulation config
        simulation_path = self.config_dir / "simulation.yml"
        simulation = {}
        if simulation_path.exists():
            simulation = self._read(simulation_path).get("simulation", {}) or {}
        config["simulation"] = self._merge(DEFAULT_SIMULATION, simulation)

        # Load catalog and CRM config
        catalog_path = self.config_dir / "catalog.yml"
        catalog_data = self._read(catalog_path) if catalog_path.exists() else {}
        config["catalog"] = self._merge(DEFAULT_CATALOG, catalog_data.get("catalog") or {})
        config["crm"] = self._merge(DEFAULT_CRM, catalog_data.get("crm") or {})

        # Load server config
        server_path = self.config_dir / "server.yml"
        server = {}
        if server_path.exists():
            server = self._read(server_path).get("server", {}) or {}
        config["server"] = self._merge(DEFAULT_SERVER, server)

        return config

    @staticmethod
    def _read(path):
        with open(path) as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _merge(defaults, overrides):
        """Shallow-merge overrides onto defaults, one level of nesting deep."""
        merged = {}
        for key, value in defaults.items():
            if isinstance(value, dict):
                merged[key] = {**value, **(overrides.get(key) or {})}
            else:
                merged[key] = overrides.get(key, value)
        for key, value in overrides.items():
            merged.setdefault(key, value)
        return merged

    def _create_default_devices(self):
        """Create default device configuration."""
        return [
            {
                "id": "thermostat-lobby",
                "name": "Lobby Thermostat",
                "type": "thermostat",
                "serial": "TS-0001",
                "location": "Lobby",
                "thresholds": {"temperature_max": 30.0, "humidity_max": 70.0},
            },
            {
                "id": "thermostat-server-room",
                "name": "Server Room Thermostat",
                "type": "thermostat",
                "serial": "TS-0002",
                "location": "Server Room",
                "thresholds": {"temperature_max": 27.0, "humidity_max": 60.0},
            },
            {
                "id": "thermostat-warehouse",
                "name": "Warehouse Thermostat",
                "type": "thermostat",
                "serial": "TS-0003",
                "location": "Warehouse",
                "thresholds": {"temperature_max": 35.0, "humidity_max": 80.0},
            },
        ]

    def _save_devices(self, devices):
        """Save devices configuration to file."""
        devices_path = self.config_dir / "devices.yml"
        with open(devices_path, "w") as f:
            yaml.dump({"devices": devices}, f, default_flow_style=False)
        print(f"[INFO] Created default devices config at {devices_path}")
