# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Document service entry point.

Wires configuration, the signed storage client, the document manager,
the expiry sweep and the HTTP server together:

1. Ensure the bucket exists (fatal on failure)
2. Start the expiry sweep thread (runs immediately, then periodically)
3. Start the HTTP server
4. Block until SIGINT/SIGTERM
"""

import argparse
import logging
import signal
import threading
import time
import urllib.request
from pathlib import Path

from tempdrive.config import AppConfig, ConfigError
from tempdrive.documents import DocumentManager
from tempdrive.logging import configure_logging
from tempdrive.s3 import ObjectStore, SignedClient, StorageError
from tempdrive.server import DocumentServer


logger = logging.getLogger(__name__)


class DocumentService:
    """Runs the document API and its background expiry sweep."""

    def __init__(
        self,
        config: AppConfig,
        *,
        opener: urllib.request.OpenerDirector | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Service configuration.
            opener: urllib opener for storage requests (tests inject one).
        """
        self.config = config
        self.client = SignedClient(config.storage, opener=opener)
        self.store = ObjectStore(self.client, config.storage.bucket)
        self.manager = DocumentManager(self.store, config.lifecycle)
        self.server = DocumentServer(self.manager, config.server)

        self._running = False
        self._stopped = False
        self._shutdown_event = threading.Event()
        self._sweep_thread: threading.Thread | None = None

    def boot(self) -> None:
        """Ensure the bucket and start the sweep thread and server.

        Raises:
            MissingCredentialsError: If storage credentials are absent.
            StorageError: If the bucket cannot be checked or created.
        """
        logger.info("Starting document service...")

        if not self.store.ensure_bucket():
            logger.info("Bucket %s is ready", self.store.bucket)

        self._running = True
        self._sweep_thread = threading.Thread(
            target=self._expiry_sweep_thread,
            daemon=True,
            name="ExpirySweep",
        )
        self._sweep_thread.start()

        self.server.start()

    def start(self) -> None:
        """Boot the service and block until ``stop()`` is called."""
        self.boot()

        try:
            while self._running:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Interrupted by user")

    def stop(self) -> None:
        """Stop the service gracefully.  Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping document service...")
        self._running = False
        self._shutdown_event.set()

        self.server.stop()

        if self._sweep_thread is not None:
            self._sweep_thread.join(timeout=10)

        self.manager.shutdown()
        logger.info("Service stopped")

    def run_sweep(self) -> int | None:
        """Run one expiry sweep, logging instead of raising.

        Returns:
            Number of documents removed, or None if the sweep was skipped
            or failed.
        """
        try:
            return self.manager.cleanup()
        except Exception as e:
            logger.exception("Error in expiry sweep: %s", e)
            return None

    def _expiry_sweep_thread(self) -> None:
        """Background thread deleting expired documents.

        Sweeps once at startup, then every ``cleanup_interval_seconds``.
        """
        interval = self.config.lifecycle.cleanup_interval_seconds
        logger.info("Expiry sweep started (interval: %ds)", interval)

        while self._running:
            self.run_sweep()
            if self._shutdown_event.wait(timeout=interval):
                break  # Shutdown signaled


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code (0=success, 1=config error, 2=startup, 3=runtime error).
    """
    parser = argparse.ArgumentParser(
        description="tempdrive document service",
        epilog="Serves expiring and permanent documents from S3 storage.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to tempdrive.yaml config file"
            " (default: ~/.config/tempdrive/tempdrive.yaml)"
        ),
    )
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )

    try:
        config = AppConfig.from_yaml(config_path=args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1

    try:
        service = DocumentService(config)
    except Exception as e:
        logger.exception("Failed to initialize service: %s", e)
        return 2

    def shutdown_handler(signum: int, frame: object) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, initiating shutdown...", signum)
        service.stop()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    try:
        service.start()
        return 0
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1
    except StorageError as e:
        logger.critical("Storage initialization failed: %s", e)
        return 2
    except Exception as e:
        logger.exception("Fatal runtime error: %s", e)
        return 3
    finally:
        service.stop()
