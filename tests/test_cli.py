"""Tests for the voxrelay command line."""

import pytest
import yaml

from voxrelay.cli import main
from voxrelay.config import RelayConfig


class TestInit:

    def test_writes_default_config(self, tmp_path, capsys):
        output = tmp_path / "relay.yaml"
        main(["init", "--output", str(output)])
        config = RelayConfig.from_dict(yaml.safe_load(output.read_text()))
        assert config.telephony.listen_path == "/twilio"
        assert "voxrelay run --config" in capsys.readouterr().out

    def test_refuses_to_overwrite(self, tmp_path):
        output = tmp_path / "relay.yaml"
        output.write_text("keep me")
        with pytest.raises(SystemExit):
            main(["init", "-o", str(output)])
        assert output.read_text() == "keep me"

    def test_force_overwrites(self, tmp_path):
        output = tmp_path / "relay.yaml"
        output.write_text("old")
        main(["init", "-o", str(output), "--force"])
        assert output.read_text().startswith("# VoxRelay Configuration")


class TestRun:

    def test_missing_config_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["run", "--config", str(tmp_path / "nope.yaml")])


def test_no_command_prints_help(capsys):
    main([])
    assert "voxrelay" in capsys.readouterr().out
