import yaml

from rackup_obs.config import Config


def test_defaults():
    config = Config()

    assert config.obs.port == 4455
    assert config.obs.overlay_text_source == "RackUp Overlay"
    assert config.recording.finalize_delay_sec == 1.5
    assert config.recording.container == "mkv"
    assert config.overlay.heartbeat_interval_sec == 15.0
    assert config.server.port == 4010


def test_load_yaml_then_environment(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "obs": {"host": "studio.local", "port": 4460, "not_a_setting": True},
        "recording": {"finalize_delay_sec": 2.5},
        "production_mode": False,
    }))
    monkeypatch.setenv("OBS_PORT", "4999")
    monkeypatch.setenv("RECORDINGS_BASE_DIR", str(tmp_path / "rec"))
    monkeypatch.delenv("OBS_HOST", raising=False)

    config = Config.load(str(path))

    assert config.obs.host == "studio.local"
    assert config.obs.port == 4999
    assert config.recording.finalize_delay_sec == 2.5
    assert config.recording.base_dir == str(tmp_path / "rec")
    assert config.production_mode is False


def test_invalid_environment_value_is_ignored():
    config = Config()
    config.apply_env({"SERVER_PORT": "http", "OBS_PASSWORD": "hunter2"})

    assert config.server.port == 4010
    assert config.obs.password == "hunter2"


def test_save_round_trip(tmp_path):
    config = Config()
    config.update_from_dict({"overlay": {"subscriber_queue_size": 32}, "server": {"port": 5000}})
    path = tmp_path / "saved.yaml"

    config.save(str(path))
    reloaded = Config._load_from_file(path)

    assert reloaded.overlay.subscriber_queue_size == 32
    assert reloaded.server.port == 5000
    assert reloaded.to_dict() == config.to_dict()
