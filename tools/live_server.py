#!/usr/bin/env python3
# tools/live_server.py
"""
Live Device Simulation Server - Main Entry Point

Wires together:
- ConfigLoader for YAML configuration
- DeviceRegistry fed by the catalog provider
- RulesEngine and CRM mirror via the CatalogSync pipeline
- SimulationOrchestrator for the shared simulation run
- SessionManager behind the FastAPI WebSocket transport
"""

import argparse
import asyncio
import random
from pathlib import Path
from typing import Any

import uvicorn

from components.catalog.clients import (
    HttpCatalogProvider,
    HttpCrmMirror,
    StaticCatalogProvider,
)
from components.catalog.rules_engine import RulesEngine
from components.catalog.sync import CatalogSync
from components.devices.simulated_device import SimulationSettings
from components.network.websocket_server import WebSocketTransport, create_app
from components.observability.logging_system import configure_logging, get_logger
from components.session.session_manager import SessionManager
from components.simulation.orchestrator import SimulationOrchestrator, SimulationRun
from components.state.device_registry import DeviceRegistry
from config.config_loader import ConfigLoader

logger = get_logger(__name__)


class LiveServerManager:
    """
    Builds and runs the live simulation server.

    Example:
        >>> manager = LiveServerManager("config")
        >>> manager.initialise()
        >>> await manager.serve()
    """

    def __init__(self, config_dir: str = "config"):
        """Initialise server manager.

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)
        self.config_loader = ConfigLoader(config_dir=str(self.config_dir))
        self.config: dict[str, Any] = {}

        self.provider: StaticCatalogProvider | HttpCatalogProvider | None = None
        self.crm: HttpCrmMirror | None = None
        self.rules: RulesEngine | None = None
        self.registry: DeviceRegistry | None = None
        self.orchestrator: SimulationOrchestrator | None = None
        self.catalog_sync: CatalogSync | None = None
        self.transport: WebSocketTransport | None = None
        self.sessions: SessionManager | None = None
        self.app = None

        self._initialised = False

    # ----------------------------------------------------------------
    # Initialisation
    # ----------------------------------------------------------------

    def initialise(self) -> None:
        """Build every component from configuration.

        Order:
        1. Load configuration and configure logging
        2. Catalog provider, CRM mirror, rules engine
        3. Registry, orchestrator, catalog sync
        4. Transport, session manager, application
        """
        if self._initialised:
            logger.warning("Server already initialised")
            return

        # 1. Configuration
        self.config = self.config_loader.load_all()
        server_cfg = self.config["server"]
        configure_logging(log_dir=server_cfg.get("log_dir"), level=server_cfg.get("log_level", "INFO"))
        logger.info("=== Initialising Live Simulation Server ===")

        # 2. External collaborators
        self.provider = self._build_provider(self.config)
        self.crm = self._build_crm(self.config)
        self.rules = RulesEngine()

        # 3. Core
        settings = SimulationSettings.from_config(self.config["simulation"])
        self.registry = DeviceRegistry(self.provider, settings)
        self.registry.add_listener(self.rules.handle_device_event)

        self.orchestrator = SimulationOrchestrator(
            self.registry, SimulationRun(), random.Random(settings.seed)
        )
        self.catalog_sync = CatalogSync(
            self.provider,
            self.rules,
            self.crm,
            timeout=self.config["catalog"].get("timeout"),
        )

        # 4. Transport
        self.transport = WebSocketTransport()
        self.sessions = SessionManager(
            self.registry,
            self.orchestrator,
            self.transport,
            self.catalog_sync,
            refresh_timeout=server_cfg.get("refresh_timeout"),
        )
        self.app = create_app(self.sessions, self.transport, on_shutdown=self.shutdown)

        self._initialised = True
        logger.info(
            f"Server initialised: catalog={'http' if isinstance(self.provider, HttpCatalogProvider) else 'static'}, "
            f"crm={'enabled' if self.crm else 'disabled'}, "
            f"simulation={settings.steps} steps @ {settings.tick_interval}s"
        )

    @staticmethod
    def _build_provider(config: dict[str, Any]):
        catalog_cfg = config["catalog"]
        if catalog_cfg.get("base_url"):
            logger.info(f"Using catalog provider at {catalog_cfg['base_url']}")
            return HttpCatalogProvider(
                catalog_cfg["base_url"],
                timeout=catalog_cfg.get("timeout", 10.0),
                api_key=catalog_cfg.get("api_key"),
            )
        logger.info("No catalog URL configured, serving devices from configuration")
        return StaticCatalogProvider.from_config(config)

    @staticmethod
    def _build_crm(config: dict[str, Any]) -> HttpCrmMirror | None:
        crm_cfg = config["crm"]
        if not crm_cfg.get("base_url"):
            return None
        return HttpCrmMirror(
            crm_cfg["base_url"],
            timeout=crm_cfg.get("timeout", 10.0),
            api_key=crm_cfg.get("api_key"),
        )

    # ----------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------

    async def shutdown(self) -> None:
        """Stop the simulation, close sessions and HTTP clients."""
        logger.info("=== Shutting down ===")

        if self.orchestrator is not None:
            await self.orchestrator.stop()
        if self.sessions is not None:
            await self.sessions.close()

        for client in (self.provider, self.crm):
            if hasattr(client, "aclose"):
                try:
                    await client.aclose()
                except Exception as e:
                    logger.error(f"Error closing {type(client).__name__}: {e}")

        logger.info("Shutdown complete")

    async def serve(self, host: str | None = None, port: int | None = None) -> None:
        """Run the HTTP/WebSocket server until interrupted."""
        if not self._initialised:
            raise RuntimeError("Cannot serve: server not initialised")

        server_cfg = self.config["server"]
        config = uvicorn.Config(
            self.app,
            host=host or server_cfg["host"],
            port=port or int(server_cfg["port"]),
            log_level=str(server_cfg.get("log_level", "info")).lower(),
        )
        logger.info(f"Listening on ws://{config.host}:{config.port}/ws/live")
        await uvicorn.Server(config).serve()


# ----------------------------------------------------------------
# Command-line interface
# ----------------------------------------------------------------


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live device simulation server")
    parser.add_argument("--config-dir", default="config", help="Configuration directory")
    parser.add_argument("--host", default=None, help="Bind address (overrides server.yml)")
    parser.add_argument("--port", type=int, default=None, help="Port (overrides server.yml)")
    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    manager = LiveServerManager(args.config_dir)
    manager.initialise()
    await manager.serve(args.host, args.port)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
