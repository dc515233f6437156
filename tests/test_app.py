from rackup_obs.app import RackupApp
from rackup_obs.device import SimulationDevice


def test_initialize_wires_components(config):
    app = RackupApp(config=config)

    assert app.initialize()

    assert isinstance(app.device, SimulationDevice)
    assert app.orchestrator.device is app.device
    assert app.orchestrator.overlay is app.overlay
    assert app.api_server.port == config.server.port
    app.tasks.stop(timeout=2.0)


def test_shutdown_stops_recording_and_detaches_clients(config):
    app = RackupApp(config=config)
    app.initialize()
    app._running = True
    app.device.connect()
    app.orchestrator.start()

    app.shutdown()

    assert app.orchestrator.active_path is None
    assert not app.device.connected
    assert app.overlay.client_count == 0


def test_unknown_device_fails_initialization(config):
    config.obs.device = "betamax"
    app = RackupApp(config=config)

    assert app.initialize() is False
