# src/serial_gateway/__main__.py
import asyncio
import signal
import sys
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from fastapi import FastAPI
from hypercorn.asyncio import serve
from hypercorn.config import Config as HyperConfig
from pydantic import ValidationError
import traceback

from serial_gateway.core.dispatcher import ForwardingDispatcher
from serial_gateway.core.gateway import Gateway
from serial_gateway.core.communication_service import CommunicationService
from serial_gateway.handlers.mqtt_handlers import MQTTMessageHandlers
from serial_gateway.api.routes import gateway_router
from serial_gateway.models.config import GatewayConfig
from serial_gateway.utils.logging import setup_logging, get_logger
from serial_gateway.utils.exceptions import ConfigurationError, InitializationError, PortUnavailableError

DEFAULT_CONFIG_PATH = "src/config/default.yml"


class AppState:
    """Holds application state and components"""
    def __init__(self):
        self.gateway: Optional[Gateway] = None
        self.dispatcher: Optional[ForwardingDispatcher] = None
        self.communication_service: Optional[CommunicationService] = None


class ConfigManager:
    """Manages configuration loading and validation"""

    @staticmethod
    def load_config(config_path: str) -> GatewayConfig:
        """Load and validate configuration from YAML file"""
        try:
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError:
            raise ConfigurationError(f"Error parsing configuration file: {traceback.format_exc()}")
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        if config is None:
            raise ConfigurationError("Configuration file is empty or incorrectly formatted")
        try:
            return GatewayConfig(**config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")


class APIServer:
    """Handles the status API server"""

    def __init__(self, config: GatewayConfig, shutdown_event: asyncio.Event, app_state: AppState):
        self.config = config
        self.shutdown_event = shutdown_event
        self.logger = get_logger("API Server")
        self.app: Optional[FastAPI] = None
        self.app_state = app_state

    def initialize(self) -> FastAPI:
        """Initialize FastAPI application with routes"""
        self.app = FastAPI(
            title="Serial Gateway API",
            description="Status and downlink access to the serial sensor gateway",
            version="1.0.0"
        )
        # Store app state for dependency injection
        self.app.state.components = self.app_state
        self.app.include_router(gateway_router, prefix="/api/v1")
        return self.app

    async def start(self):
        """Start the API server"""
        if not self.app:
            self.initialize()

        hypercorn_config = HyperConfig()
        host = self.config.api.host
        port = self.config.api.port
        hypercorn_config.bind = [f"{host}:{port}"]

        async def shutdown_trigger():
            await self.shutdown_event.wait()

        self.logger.info(f"Starting API server on {host}:{port}")
        await serve(self.app, hypercorn_config, shutdown_trigger=shutdown_trigger)


class SerialGatewayApp:
    """Main gateway application class"""

    def __init__(self, config_path: str):
        self.logger = get_logger("Main App")
        try:
            self.config = ConfigManager.load_config(config_path)
            setup_logging(self.config.logging)
        except ConfigurationError:
            self.logger.error(f"Configuration error: {traceback.format_exc()}")
            sys.exit(1)

        self.shutdown_event = asyncio.Event()
        self.shutting_down = False
        self.app_state = AppState()
        self.api_server = APIServer(self.config, self.shutdown_event, self.app_state)

    async def initialize_components(self):
        """Initialize all application components"""
        try:
            self.app_state.dispatcher = ForwardingDispatcher(
                mute_connection_error=self.config.mute_connection_error,
                offline=self.config.offline,
            )
            self.app_state.gateway = Gateway(self.config, self.app_state.dispatcher)
            await self.app_state.gateway.initialize()

            if not self.config.offline:
                self.app_state.communication_service = CommunicationService(
                    self.config.communication,
                    self.app_state.dispatcher,
                    handlers=MQTTMessageHandlers(self.app_state.gateway),
                )
                await self.app_state.communication_service.initialize()

            self.logger.info("All components initialized successfully")
        except Exception:
            raise InitializationError(f"Failed to initialize components: {traceback.format_exc()}")

    async def run_gateway(self):
        try:
            await self.app_state.gateway.run()
        except PortUnavailableError:
            self.logger.error("No usable serial port, stopping")
        await self.shutdown()

    async def shutdown(self):
        """Gracefully shutdown all components"""
        if self.shutting_down:
            return
        self.shutting_down = True
        self.logger.info("Initiating shutdown sequence")
        try:
            if self.app_state.gateway:
                await self.app_state.gateway.stop()
            if self.app_state.communication_service:
                await self.app_state.communication_service.shutdown()
            self.logger.info("Shutdown completed successfully")
        except Exception:
            self.logger.error(f"Error during shutdown: {traceback.format_exc()}")
        finally:
            self.shutdown_event.set()

    def handle_signals(self):
        """Set up signal handlers for graceful shutdown"""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}")
            asyncio.create_task(self.shutdown())

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler, sig)

    async def run(self):
        """Main application entry point"""
        try:
            self.handle_signals()
            await self.initialize_components()

            services = [self.run_gateway()]
            if self.config.api.enabled:
                services.append(self.api_server.start())
            await asyncio.gather(*services)
        except InitializationError:
            self.logger.error(f"Initialization error: {traceback.format_exc()}")
            await self.shutdown()
            sys.exit(1)
        except Exception:
            self.logger.error(f"Unexpected error: {traceback.format_exc()}")
            await self.shutdown()
            sys.exit(1)


def main():
    """Application entry point"""
    config_path = Path(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CONFIG_PATH)
    app = SerialGatewayApp(str(config_path))
    asyncio.run(app.run())


if __name__ == "__main__":
    main()
