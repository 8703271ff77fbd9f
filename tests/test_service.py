# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the service wiring, expiry sweep thread and entry point."""

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tempdrive.config import AppConfig, LifecycleConfig, ServerConfig
from tempdrive.s3 import StorageConnectionError, StorageRequestError
from tempdrive.service import DocumentService, main


BUCKET = "drive-documents"


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def app_config(storage_config) -> AppConfig:
    return AppConfig(
        storage=storage_config,
        server=ServerConfig(port=1),
        lifecycle=LifecycleConfig(cleanup_interval_seconds=3600),
    )


@pytest.fixture
def service(app_config, fake_s3) -> Iterator[DocumentService]:
    """Service wired to the fake store, bound to an ephemeral port."""
    with patch("tempdrive.server.server.make_server") as mock_make_server:
        mock_make_server.return_value.server_port = 5555
        service = DocumentService(app_config, opener=fake_s3)
        yield service
        service.stop()


class TestDocumentService:
    """Tests for DocumentService lifecycle."""

    def test_wiring(self, service, app_config) -> None:
        """Components share the configured bucket and lifecycle."""
        assert service.store.bucket == BUCKET
        assert service.manager.lifecycle is app_config.lifecycle
        assert service.server.host == "127.0.0.1"

    def test_boot_creates_missing_bucket(self, service, fake_s3) -> None:
        """A missing bucket is created before the server starts."""
        fake_s3.buckets.clear()

        service.boot()

        assert BUCKET in fake_s3.buckets
        assert fake_s3.calls("PUT", f"/{BUCKET}") == [f"/{BUCKET}"]
        assert service.server.port == 5555

    def test_boot_existing_bucket(self, service, fake_s3, caplog) -> None:
        """An existing bucket is reported and left alone."""
        with caplog.at_level(logging.INFO, logger="tempdrive.service"):
            service.boot()

        assert fake_s3.calls("PUT") == []
        assert f"Bucket {BUCKET} is ready" in caplog.text

    def test_boot_storage_failure(self, service, fake_s3) -> None:
        """Bucket check failures abort startup before the server starts."""
        fake_s3.fail("HEAD", f"/{BUCKET}", 403, "AccessDenied")

        with pytest.raises(StorageRequestError):
            service.boot()

        assert service._sweep_thread is None
        assert service.server._server is None

    def test_sweep_runs_at_startup(self, service, store) -> None:
        """The sweep thread removes expired documents immediately."""
        store.put_object(
            "stale",
            b"x",
            "text/plain",
            {
                "original-name": "stale.txt",
                "size": "1",
                "created-at": "1",
                "permanent": "false",
                "expires-at": "2",
            },
        )
        store.put_object(
            "keep",
            b"y",
            "text/plain",
            {"size": "1", "created-at": "1", "permanent": "true"},
        )

        service.boot()

        assert _wait_for(lambda: "stale" not in store.list_object_keys())
        assert "keep" in store.list_object_keys()
        assert service._sweep_thread is not None
        assert service._sweep_thread.name == "ExpirySweep"

    def test_stop_joins_sweep_thread(self, service) -> None:
        """stop() wakes the sleeping sweep thread and waits for it."""
        service.boot()
        thread = service._sweep_thread
        assert thread is not None

        service.stop()

        assert not thread.is_alive()
        assert service._running is False

    def test_stop_idempotent(self, service) -> None:
        """stop() may be called repeatedly, even without boot()."""
        with patch.object(service.manager, "shutdown") as mock_shutdown:
            service.stop()
            service.stop()

        mock_shutdown.assert_called_once()

    def test_start_blocks_until_stop(self, service) -> None:
        """start() returns once another thread stops the service."""
        runner = threading.Thread(target=service.start, daemon=True)
        runner.start()
        assert _wait_for(lambda: service._running)

        service.stop()
        runner.join(timeout=5)

        assert not runner.is_alive()


class TestRunSweep:
    """Tests for run_sweep error handling."""

    def test_returns_removed_count(self, service) -> None:
        """The number of removed documents is passed through."""
        with patch.object(service.manager, "cleanup", return_value=3):
            assert service.run_sweep() == 3

    def test_errors_are_logged_not_raised(self, service, caplog) -> None:
        """A failing sweep is logged and the thread keeps going."""
        with (
            patch.object(
                service.manager,
                "cleanup",
                side_effect=StorageConnectionError("refused"),
            ),
            caplog.at_level(logging.ERROR, logger="tempdrive.service"),
        ):
            assert service.run_sweep() is None

        assert "Error in expiry sweep" in caplog.text


class TestMain:
    """Tests for the command-line entry point."""

    @pytest.fixture(autouse=True)
    def _quiet(self) -> Iterator[MagicMock]:
        with (
            patch("tempdrive.service.configure_logging") as mock_logging,
            patch("tempdrive.service.signal.signal"),
            patch("tempdrive.config.load_dotenv_once"),
        ):
            yield mock_logging

    @pytest.fixture
    def config_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "tempdrive.yaml"
        path.write_text(
            "storage:\n"
            "  endpoint: minio.test\n"
            "  access_key: AKIDTEST\n"
            "  secret_key: test-secret-key\n"
        )
        return path

    def test_missing_config(self, tmp_path: Path) -> None:
        """A missing config file exits with 1."""
        assert main(["--config", str(tmp_path / "nope.yaml")]) == 1

    def test_invalid_config(self, tmp_path: Path) -> None:
        """An invalid value exits with 1."""
        path = tmp_path / "tempdrive.yaml"
        path.write_text("server:\n  port: 0\n")

        assert main(["--config", str(path)]) == 1

    def test_missing_credentials(self, tmp_path: Path) -> None:
        """Absent storage keys exit with 1 before any network I/O."""
        path = tmp_path / "tempdrive.yaml"
        path.write_text("storage:\n  endpoint: minio.test\n")

        with patch("urllib.request.OpenerDirector.open") as mock_open:
            assert main(["--config", str(path)]) == 1

        mock_open.assert_not_called()

    def test_init_failure(self, config_file: Path) -> None:
        """Failures constructing the service exit with 2."""
        with patch(
            "tempdrive.service.DocumentService",
            side_effect=RuntimeError("boom"),
        ):
            assert main(["--config", str(config_file)]) == 2

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (StorageConnectionError("connection refused"), 2),
            (StorageRequestError(403, "AccessDenied"), 2),
            (RuntimeError("boom"), 3),
        ],
    )
    def test_startup_errors(self, config_file: Path, error, code) -> None:
        """Storage failures exit with 2, anything else with 3."""
        with patch("tempdrive.service.DocumentService") as mock_service:
            mock_service.return_value.start.side_effect = error

            assert main(["--config", str(config_file)]) == code

        mock_service.return_value.stop.assert_called_once()

    def test_clean_exit(self, config_file: Path) -> None:
        """A service that stops normally exits with 0."""
        with patch("tempdrive.service.DocumentService") as mock_service:
            assert main(["--config", str(config_file)]) == 0

        config = mock_service.call_args.args[0]
        assert config.storage.endpoint == "minio.test"
        mock_service.return_value.stop.assert_called_once()

    def test_debug_flag(self, config_file: Path, _quiet: MagicMock) -> None:
        """--debug lowers the log level."""
        with patch("tempdrive.service.DocumentService"):
            main(["--debug", "--config", str(config_file)])

        assert _quiet.call_args.kwargs["level"] == logging.DEBUG

    def test_signal_handlers_stop_service(self, config_file: Path) -> None:
        """SIGINT and SIGTERM both trigger a graceful stop."""
        with (
            patch("tempdrive.service.DocumentService") as mock_service,
            patch("tempdrive.service.signal.signal") as mock_signal,
        ):
            main(["--config", str(config_file)])

        handlers = {c.args[0]: c.args[1] for c in mock_signal.call_args_list}
        assert set(handlers) == {signal.SIGINT, signal.SIGTERM}

        mock_service.return_value.stop.reset_mock()
        handlers[signal.SIGTERM](signal.SIGTERM, None)
        mock_service.return_value.stop.assert_called_once()

