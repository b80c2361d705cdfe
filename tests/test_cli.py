"""
Tests for the offline parts of the command-line interface.
"""

import configparser

import pytest
from typer.testing import CliRunner

from beatport_bridge import __version__
from beatport_bridge.cli import app as cli

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "beatport-bridge" / "config.ini"
    monkeypatch.setattr(cli, "CONFIG_FILE", path)
    return path


def read_ini(path):
    parser = configparser.ConfigParser()
    parser.read(path, encoding="utf-8")
    return parser["DEFAULT"]


def test_version():
    result = runner.invoke(cli.app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_config(config_file):
    result = runner.invoke(
        cli.app, ["init", "--port", "8337", "--quality", "wav", "--no-notifications"]
    )
    assert result.exit_code == 0, result.output
    section = read_ini(config_file)
    assert section["service_port"] == "8337"
    assert section["download_quality"] == "wav"
    assert section["notifications_enabled"] == "false"


def test_init_rejects_invalid_port(config_file):
    result = runner.invoke(cli.app, ["init", "--port", "0"])
    assert result.exit_code == 1
    assert not config_file.exists()


def test_init_asks_before_overwriting(config_file):
    runner.invoke(cli.app, ["init", "--port", "8337"])
    result = runner.invoke(cli.app, ["init", "--port", "1338"], input="n\n")
    assert result.exit_code != 0
    assert read_ini(config_file)["service_port"] == "8337"


def test_settings_updates_only_given_keys(config_file):
    runner.invoke(cli.app, ["init", "--host", "nas.local"])
    result = runner.invoke(cli.app, ["settings", "--quality", "AIFF"])
    assert result.exit_code == 0, result.output
    section = read_ini(config_file)
    assert section["download_quality"] == "aiff"
    assert section["service_host"] == "nas.local"


def test_settings_rejects_invalid_quality(config_file):
    result = runner.invoke(cli.app, ["settings", "--quality", "ogg"])
    assert result.exit_code == 1
    assert not config_file.exists()


def test_download_rejects_malformed_metadata(config_file):
    result = runner.invoke(cli.app, ["download", "12345", "--meta", "no-separator"])
    assert result.exit_code == 1
    assert "KEY=VALUE" in result.output


def test_download_metadata_requires_a_single_track(config_file):
    result = runner.invoke(
        cli.app, ["download", "111", "222", "--meta", "title=Strobe"]
    )
    assert result.exit_code == 1
    assert "one track ID" in result.output
