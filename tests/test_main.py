"""
Tests for command line handling.
"""

import os

import pytest

from rover_gs.common.errors import ConfigError
from rover_gs.ground import main as main_module
from rover_gs.ground.main import apply_args, build_parser, main
from rover_gs.ground.station import GroundStation


class TestArguments:
    """Tests for argument parsing and config overrides."""

    def test_defaults_leave_config_alone(self, config):
        args = build_parser().parse_args([])
        apply_args(config, args)
        assert config.enable_web is False
        assert config.simulate_radio is False

    def test_overrides(self, config, tmp_path):
        args = build_parser().parse_args([
            "--simulate", "--callsign", "GND2", "--frequency", "915",
            "--web-port", "8081", "--no-display",
            "--data-path", str(tmp_path / "d"),
            "--encryption-key", "ff" * 16,
        ])

        apply_args(config, args)

        assert config.simulate_radio is True
        assert config.callsign == "GND2"
        assert config.frequency_mhz == 915.0
        assert config.web_port == 8081
        assert config.display_enabled is False
        assert config.telemetry_db_path == str(tmp_path / "d" / "telemetry.db")
        assert config.max_frame_size == 64

    def test_no_web(self, config):
        config.enable_web = True
        apply_args(config, build_parser().parse_args(["--no-web"]))
        assert config.enable_web is False

    def test_bad_key_rejected_early(self, config):
        args = build_parser().parse_args(["--encryption-key", "1234"])
        with pytest.raises(ConfigError):
            apply_args(config, args)

    def test_bad_log_level(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--log-level", "LOUD"])


class TestMain:
    """Tests for the entry point up to the point the station starts."""

    @pytest.fixture
    def started(self, monkeypatch):
        """Stub out the radio loop, logging setup and signal handlers."""
        stations = []
        monkeypatch.setattr(GroundStation, "start", lambda self: stations.append(self))
        monkeypatch.setattr(main_module, "setup_logging", lambda *args, **kwargs: None)
        monkeypatch.setattr(main_module.signal, "signal", lambda *args: None)
        for name in ("ROVERGS_DATA_PATH", "ROVERGS_LOG_PATH", "ROVERGS_ENCRYPTION_KEY"):
            monkeypatch.delenv(name, raising=False)
        return stations

    def test_data_path_without_default_dirs(self, tmp_path, monkeypatch, started):
        """--data-path works when the default data directory is not writable."""
        real_makedirs = os.makedirs

        def makedirs(path, *args, **kwargs):
            if str(path).startswith("/var/lib/rover-gs"):
                raise PermissionError(13, "Permission denied", str(path))
            return real_makedirs(path, *args, **kwargs)

        monkeypatch.setattr(os, "makedirs", makedirs)
        data = tmp_path / "data"

        assert main(["--simulate", "--no-web", "--no-display", "--data-path", str(data)]) == 0

        config = started[0].config
        assert config.data_path == str(data)
        assert config.telemetry_db_path == str(data / "telemetry.db")
        assert (data / "logs").is_dir()

    def test_data_path_beats_environment(self, tmp_path, monkeypatch, started):
        monkeypatch.setenv("ROVERGS_DATA_PATH", str(tmp_path / "env"))

        main(["--simulate", "--no-web", "--no-display", "--data-path", str(tmp_path / "cli")])

        assert started[0].config.data_path == str(tmp_path / "cli")
        assert not (tmp_path / "env").exists()

    def test_bad_key_exits(self, tmp_path, started):
        with pytest.raises(SystemExit):
            main(["--data-path", str(tmp_path), "--encryption-key", "zz"])
        assert started == []
