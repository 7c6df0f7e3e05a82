"""
Tests for configuration lookup and overlays.
"""

import os
from unittest.mock import MagicMock

from stockline.config import Config
from stockline.errors import CollaboratorFailure
from stockline.tables import InMemoryTableStore


class TestConfig:

    def test_defaults(self):
        config = Config()

        assert config.get("SHEET_NAME_RECORDS") == "Records"
        assert config.get_int("CACHE_EXPIRATION_INVENTORY", 1) == 300
        assert config.get_int("RECORDS_FETCH_LIMIT", 1) == 5

    def test_missing_and_empty_values_use_default(self):
        config = Config({"TIMEZONE": ""})

        assert config.get("TIMEZONE", "UTC") == "UTC"
        assert config.get("NOPE") is None

    def test_get_int_rejects_garbage(self):
        config = Config({"RECORDS_FETCH_LIMIT": "many", "CACHE_EXPIRATION_USERS": "-1"})

        assert config.get_int("RECORDS_FETCH_LIMIT", 5) == 5
        assert config.get_int("CACHE_EXPIRATION_USERS", 3600) == 3600

    def test_get_list(self):
        config = Config({"QR_UNITS": " pcs, box ,,m "})

        assert config.get_list("QR_UNITS") == ["pcs", "box", "m"]

    def test_message_placeholders_and_newlines(self):
        config = Config({"GREETING": "Hi {name},\\nstock is {stock} {stock}"})

        assert config.message("GREETING", name="Ann", stock=3) == "Hi Ann,\nstock is 3 3"

    def test_message_values_are_not_substituted_again(self):
        """A typed name containing a placeholder is rendered literally."""
        config = Config({"ADDED": "Added {name}: {stock} {unit}"})

        rendered = config.message("ADDED", name="Box {unit} \\n", stock=2, unit="pcs")

        assert rendered == "Added Box {unit} \\n: 2 pcs"

    def test_message_unknown_placeholder_kept(self):
        assert Config({"T": "{a} {b}"}).message("T", a=1) == "1 {b}"

    def test_message_missing_key(self):
        assert Config().message("NO_SUCH_TEMPLATE") == "[missing config: NO_SUCH_TEMPLATE]"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TIMEZONE", "Europe/Berlin")
        monkeypatch.setenv("LINE_CHANNEL_SECRET", "s3cret")

        config = Config.from_env(str(tmp_path / "missing.env"))

        assert config.get("TIMEZONE") == "Europe/Berlin"
        assert config.get("LINE_CHANNEL_SECRET") == "s3cret"

    def test_from_env_loads_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("RECORDS_FETCH_LIMIT", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("RECORDS_FETCH_LIMIT=9\n")

        try:
            config = Config.from_env(str(env_file))
        finally:
            os.environ.pop("RECORDS_FETCH_LIMIT", None)

        assert config.get_int("RECORDS_FETCH_LIMIT", 5) == 9


class TestConfigTableOverlay:

    def test_overlay_skips_header_and_blank_keys(self):
        tables = InMemoryTableStore({"Config": [
            ["key", "value"],
            ["MSG_HELP", "Ask the storekeeper"],
            ["", "ignored"],
            ["ONLY_KEY"],
        ]})
        config = Config()

        assert config.overlay_table(tables) == 1
        assert config.get("MSG_HELP") == "Ask the storekeeper"

    def test_overlay_failure_keeps_defaults(self):
        tables = MagicMock()
        tables.read_all_rows.side_effect = CollaboratorFailure("down")
        config = Config()

        assert config.overlay_table(tables) == 0
        assert config.get("SHEET_NAME_USERS") == "Users"
