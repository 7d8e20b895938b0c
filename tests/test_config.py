"""Tests for engine configuration."""

from __future__ import annotations

from textwrap import dedent

import pytest

from pivotorm import EngineConfig


def test_defaults():
    config = EngineConfig()
    assert config.url == "sqlite::memory:"
    assert config.stream_batch_size == 100
    assert config.foreign_keys is True
    assert config.echo is False


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError, match="stream_batch_size"):
        EngineConfig(stream_batch_size=0)


class TestFromIni:
    def test_reads_section(self, tmp_path) -> None:
        path = tmp_path / "pivotorm.ini"
        path.write_text(
            dedent("""
                [pivotorm]
                url = sqlite:///app.db
                stream_batch_size = 500
                foreign_keys = off
                echo = yes
            """)
        )

        assert EngineConfig.from_ini(path) == EngineConfig(
            url="sqlite:///app.db", stream_batch_size=500, foreign_keys=False, echo=True
        )

    def test_missing_keys_use_defaults(self, tmp_path) -> None:
        path = tmp_path / "setup.cfg"
        path.write_text("[tool]\nurl = sqlite:///x.db\n")

        assert EngineConfig.from_ini(path, section="tool") == EngineConfig(url="sqlite:///x.db")

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            EngineConfig.from_ini(tmp_path / "nope.ini")

    def test_missing_section(self, tmp_path) -> None:
        path = tmp_path / "pivotorm.ini"
        path.write_text("[other]\n")
        with pytest.raises(ValueError, match=r"No \[pivotorm\] section"):
            EngineConfig.from_ini(path)

    def test_malformed_value(self, tmp_path) -> None:
        path = tmp_path / "pivotorm.ini"
        path.write_text("[pivotorm]\nstream_batch_size = lots\n")
        with pytest.raises(ValueError):
            EngineConfig.from_ini(path)


class TestFromEnv:
    def test_reads_variables(self) -> None:
        config = EngineConfig.from_env(
            {
                "PIVOTORM_DATABASE_URL": "sqlite:///env.db",
                "PIVOTORM_STREAM_BATCH_SIZE": "25",
                "PIVOTORM_FOREIGN_KEYS": "false",
                "PIVOTORM_ECHO": "1",
            }
        )
        assert config == EngineConfig(url="sqlite:///env.db", stream_batch_size=25, foreign_keys=False, echo=True)

    def test_empty_environment(self) -> None:
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("PIVOTORM_STREAM_BATCH_SIZE", "3")
        assert EngineConfig.from_env().stream_batch_size == 3

    @pytest.mark.parametrize(
        ("name", "value"),
        [("PIVOTORM_STREAM_BATCH_SIZE", "ten"), ("PIVOTORM_ECHO", "maybe"), ("PIVOTORM_STREAM_BATCH_SIZE", "0")],
    )
    def test_invalid_values(self, name, value) -> None:
        with pytest.raises(ValueError):
            EngineConfig.from_env({name: value})
