"""Unit tests for icalmerger.core.config_manager."""

import json
import os
from pathlib import Path

import pytest

from icalmerger.core.config_manager import (
    DEFAULT_CONFIG_PATH,
    ConfigManager,
    MergerConfig,
    parse_env_file,
)
from icalmerger.core.exceptions import ConfigError

pytestmark = pytest.mark.unit


def _write_config(tmp_path: Path, data: object, name: str = "config.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def manager(tmp_path: Path) -> ConfigManager:
    return ConfigManager(env_file_path=tmp_path / ".env")


class TestMergerConfig:
    """Tests for MergerConfig validation."""

    def test_defaults(self) -> None:
        config = MergerConfig()
        assert config.calendars == []
        assert config.sync_interval_minutes == 15
        assert config.output_timezone == "Europe/Berlin"
        assert config.server_port == 8080

    def test_camel_case_aliases_accepted(self) -> None:
        config = MergerConfig.model_validate(
            {
                "calendars": [{"name": "Work", "url": "https://example.test/work.ics"}],
                "outputPath": "/tmp/out.ics",
                "syncIntervalMinutes": 5,
                "outputTimezone": "America/New_York",
            }
        )
        assert config.calendars[0].name == "Work"
        assert config.output_path == "/tmp/out.ics"
        assert config.sync_interval_minutes == 5
        assert config.output_timezone == "America/New_York"

    def test_invalid_timezone_falls_back(self) -> None:
        assert MergerConfig(output_timezone="Nowhere/Special").output_timezone == "Europe/Berlin"

    def test_duplicate_calendar_names_rejected(self) -> None:
        with pytest.raises(ValueError, match="duplicate calendar names: Work"):
            MergerConfig.model_validate(
                {
                    "calendars": [
                        {"name": "Work", "url": "a.ics"},
                        {"name": "Work", "url": "b.ics"},
                    ]
                }
            )

    def test_with_local_sources_rewrites_urls(self) -> None:
        config = MergerConfig.model_validate(
            {"calendars": [{"name": "Work", "url": "https://example.test/work.ics"}]}
        )
        local = config.with_local_sources("/data/calendars/")

        assert local.calendars[0].url == "file:///data/calendars/Work.ics"
        assert local.calendars[0].is_local
        assert config.calendars[0].url == "https://example.test/work.ics"


class TestParseEnvFile:
    """Tests for parse_env_file."""

    def test_parse_env_file_skips_comments_and_strips_quotes(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text('# comment\n\nA=1\nB="two"\nC = \'three\'\nnot a pair\n')

        assert parse_env_file(env_file) == {"A": "1", "B": "two", "C": "three"}

    def test_parse_env_file_when_missing_then_empty(self, tmp_path: Path) -> None:
        assert parse_env_file(tmp_path / "missing.env") == {}


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_load_env_file_does_not_override_existing(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("ICALMERGER_TEST_A=from-file\nICALMERGER_TEST_B=from-file\n")
        monkeypatch.setenv("ICALMERGER_TEST_A", "from-env")
        monkeypatch.delenv("ICALMERGER_TEST_B", raising=False)

        try:
            loaded = ConfigManager(env_file_path=env_file).load_env_file()

            assert loaded == ["ICALMERGER_TEST_B"]
            assert os.environ["ICALMERGER_TEST_A"] == "from-env"
            assert os.environ["ICALMERGER_TEST_B"] == "from-file"
        finally:
            os.environ.pop("ICALMERGER_TEST_B", None)

    def test_resolve_config_path_order(self, monkeypatch: pytest.MonkeyPatch) -> None:
        assert ConfigManager.resolve_config_path() == Path(DEFAULT_CONFIG_PATH)
        monkeypatch.setenv("CONFIG_PATH", "/b.json")
        assert ConfigManager.resolve_config_path() == Path("/b.json")
        monkeypatch.setenv("ICALMERGER_CONFIG", "/a.json")
        assert ConfigManager.resolve_config_path() == Path("/a.json")
        assert ConfigManager.resolve_config_path("/explicit.yaml") == Path("/explicit.yaml")

    def test_load_full_config_from_json(self, manager: ConfigManager, tmp_path: Path) -> None:
        path = _write_config(
            tmp_path,
            {
                "calendars": [{"name": "Work", "url": "https://example.test/work.ics"}],
                "outputPath": str(tmp_path / "merged.ics"),
            },
        )
        config = manager.load_full_config(str(path))

        assert [source.name for source in config.calendars] == ["Work"]
        assert config.output_path == str(tmp_path / "merged.ics")

    def test_load_full_config_from_yaml(self, manager: ConfigManager, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "calendars:\n"
            "  - name: Personal\n"
            "    url: file://./calendars/Personal.ics\n"
            "syncIntervalMinutes: 30\n",
            encoding="utf-8",
        )
        config = manager.load_full_config(str(path))

        assert config.calendars[0].is_local
        assert config.sync_interval_minutes == 30

    def test_env_overrides_win_over_file(
        self, manager: ConfigManager, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = _write_config(tmp_path, {"outputTimezone": "UTC", "syncIntervalMinutes": 5})
        monkeypatch.setenv("OUTPUT_TIMEZONE", "America/Chicago")
        monkeypatch.setenv("ICALMERGER_SYNC_INTERVAL_MINUTES", "60")

        config = manager.load_full_config(str(path))

        assert config.output_timezone == "America/Chicago"
        assert config.sync_interval_minutes == 60

    def test_missing_file_gives_defaults(self, manager: ConfigManager, tmp_path: Path) -> None:
        config = manager.load_full_config(str(tmp_path / "absent.json"))
        assert config.calendars == []

    def test_unparseable_file_raises_config_error(
        self, manager: ConfigManager, tmp_path: Path
    ) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("calendars: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            manager.load_full_config(str(path))

    def test_non_mapping_raises_config_error(self, manager: ConfigManager, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="mapping"):
            manager.load_full_config(str(_write_config(tmp_path, ["not", "a", "mapping"])))

    def test_invalid_values_raise_config_error(
        self, manager: ConfigManager, tmp_path: Path
    ) -> None:
        path = _write_config(tmp_path, {"syncIntervalMinutes": 0})
        with pytest.raises(ConfigError, match="Invalid configuration"):
            manager.load_full_config(str(path))
