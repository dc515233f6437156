import queue
import types

import pytest

from rackup_obs.api import APIServer
from rackup_obs.config import Config
from rackup_obs.device import SimulationDevice
from rackup_obs.overlay import OverlayBroadcaster
from rackup_obs.recording import RecordingLibrary
from rackup_obs.recording.orchestrator import RecordingOrchestrator
from rackup_obs.tasks import DeferredTaskQueue


@pytest.fixture
def config(tmp_path):
    config = Config()
    config.obs.device = "simulation"
    config.recording.base_dir = str(tmp_path / "recordings")
    config.recording.finalize_delay_sec = 0.0
    config.recording.lock_timeout_sec = 0.5
    config.overlay.heartbeat_interval_sec = 30.0
    return config


@pytest.fixture
def device(config):
    device = SimulationDevice(config)
    device.connect()
    return device


@pytest.fixture
def library(config):
    return RecordingLibrary(config)


@pytest.fixture
def overlay(config):
    overlay = OverlayBroadcaster(heartbeat_interval=config.overlay.heartbeat_interval_sec)
    yield overlay
    overlay.close()


@pytest.fixture
def tasks():
    tasks = DeferredTaskQueue(name="test-tasks")
    tasks.start()
    yield tasks
    tasks.stop(timeout=2.0)


@pytest.fixture
def orchestrator(config, device, library, overlay, tasks):
    return RecordingOrchestrator(config, device, library, overlay, tasks)


@pytest.fixture
def app_context(config, device, library, overlay, tasks, orchestrator):
    return types.SimpleNamespace(
        config=config,
        device=device,
        library=library,
        overlay=overlay,
        tasks=tasks,
        orchestrator=orchestrator,
    )


@pytest.fixture
def client(app_context):
    server = APIServer(app_context, port=app_context.config.server.port)
    server.flask_app.testing = True
    return server.flask_app.test_client()


@pytest.fixture
def make_recording(library):
    """Create a placeholder video under the recordings directory."""
    def _make(relative_path, size=16):
        path = library.base_dir / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\0" * size)
        return path
    return _make


def _drain(subscriber):
    chunks = []
    while True:
        try:
            chunk = subscriber._queue.get_nowait()
        except queue.Empty:
            return chunks
        if chunk is not None:
            chunks.append(chunk)


@pytest.fixture
def drain():
    """Everything currently queued for a subscriber, without blocking."""
    return _drain
