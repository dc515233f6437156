"""
Main RackUp OBS application.

Orchestrates all components:
- Recording device (OBS or simulation)
- Recording library and orchestrator
- Live overlay broadcaster
- Deferred task queue
- REST API server
"""

import signal
import logging
import sys
from pathlib import Path
from typing import Optional

from rackup_obs.config import Config
from rackup_obs.device import RecordingDevice, create_device
from rackup_obs.api import APIServer
from rackup_obs.errors import RackupError
from rackup_obs.overlay import OverlayBroadcaster
from rackup_obs.recording import RecordingLibrary
from rackup_obs.recording.orchestrator import RecordingOrchestrator
from rackup_obs.tasks import DeferredTaskQueue

logger = logging.getLogger(__name__)

LOG_DIR = Path.home() / "rackup" / "logs"


class RackupApp:
    """
    Main application class.

    Manages lifecycle of all components and provides
    unified access to services.
    """

    def __init__(self, config_path: Optional[str] = None, config: Optional[Config] = None):
        """
        Initialize RackUp OBS application.

        Args:
            config_path: Optional path to configuration file
            config: Already-loaded configuration (takes precedence)
        """
        self.config = config or Config.load(config_path)

        self.device: Optional[RecordingDevice] = None
        self.library: Optional[RecordingLibrary] = None
        self.overlay: Optional[OverlayBroadcaster] = None
        self.tasks: Optional[DeferredTaskQueue] = None
        self.orchestrator: Optional[RecordingOrchestrator] = None
        self.api_server: Optional[APIServer] = None

        self._running = False

    def _setup_logging(self) -> None:
        """Configure logging based on mode."""
        if self.config.production_mode:
            # Production: minimal logging
            logging.basicConfig(
                level=logging.INFO,
                format="%(levelname)s - %(message)s",
                handlers=[logging.StreamHandler(sys.stdout)]
            )
        else:
            # Development: full logging to file
            LOG_DIR.mkdir(parents=True, exist_ok=True)

            logging.basicConfig(
                level=logging.DEBUG,
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                handlers=[
                    logging.StreamHandler(sys.stdout),
                    logging.FileHandler(LOG_DIR / "rackup_obs.log"),
                ]
            )

    def _install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.shutdown()
        sys.exit(0)

    def initialize(self) -> bool:
        """
        Initialize all components.

        Returns:
            True if initialization successful
        """
        try:
            logger.info("Initializing components...")

            self.device = create_device(self.config.obs.device, self.config)
            logger.info(f"Recording device initialized ({self.config.obs.device})")

            self.library = RecordingLibrary(self.config)
            self.overlay = OverlayBroadcaster(
                heartbeat_interval=self.config.overlay.heartbeat_interval_sec
            )
            self.tasks = DeferredTaskQueue()
            self.tasks.start()

            self.orchestrator = RecordingOrchestrator(
                self.config,
                self.device,
                self.library,
                self.overlay,
                self.tasks,
            )
            logger.info("Recording orchestrator initialized")

            self.api_server = APIServer(
                self,
                host=self.config.server.host,
                port=self.config.server.port
            )
            logger.info("API server initialized")

            logger.info("All components initialized successfully")
            return True

        except (RackupError, ValueError, OSError) as e:
            logger.error(f"Initialization failed: {e}")
            return False

    def run(self) -> None:
        """
        Start the application.

        Blocks until shutdown is requested.
        """
        self._setup_logging()
        logger.info(
            f"RackUp OBS starting - OBS at {self.config.obs.host}:{self.config.obs.port}"
        )

        if not self.initialize():
            logger.error("Failed to initialize, exiting")
            sys.exit(1)

        self._install_signal_handlers()
        self._running = True

        # OBS may start after us; keep serving while the device reconnects
        self.device.connect_in_background()

        logger.info(f"Starting web server on port {self.config.server.port}")
        try:
            self.api_server.run(debug=not self.config.production_mode)
        except KeyboardInterrupt:
            pass
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        if not self._running:
            return

        self._running = False
        logger.info("Shutting down RackUp OBS...")

        if self.orchestrator:
            self.orchestrator.shutdown()

        if self.tasks:
            self.tasks.stop()

        if self.overlay:
            self.overlay.close()

        if self.device:
            self.device.disconnect()

        logger.info("Shutdown complete")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="RackUp OBS recording server")
    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Run in development mode"
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use the simulation device instead of OBS"
    )

    args = parser.parse_args()

    app = RackupApp(config_path=args.config)

    if args.dev:
        app.config.production_mode = False
    if args.simulate:
        app.config.obs.device = "simulation"

    app.run()


if __name__ == "__main__":
    main()
