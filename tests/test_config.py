import json
import os
import stat
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from mkpcli.config import PRODUCTION, STAGING, Config, config_path, load_config, redact_token, save_config


class TestConfigFile(unittest.TestCase):
    def test_round_trip_is_private(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "nested" / "config.json"
            save_config(Config(token="tok_1234567890", timeout_s=5.0), path)

            self.assertEqual(stat.S_IMODE(os.stat(path).st_mode), 0o600)
            cfg = load_config(path)

        self.assertEqual(cfg.token, "tok_1234567890")
        self.assertEqual(cfg.timeout_s, 5.0)
        self.assertEqual(cfg.auth_header, "csp-auth-token")

    def test_unknown_keys_are_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"host": "gtw.example.com", "refresh_token": "x"}), encoding="utf-8")
            cfg = load_config(path)
        self.assertEqual(cfg.host, "gtw.example.com")

    def test_missing_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(load_config(Path(td) / "absent.json"), Config())

    def test_env_path_override(self) -> None:
        with patch.dict(os.environ, {"MKPCLI_CONFIG_PATH": "/tmp/mkpcli-test.json"}):
            self.assertEqual(config_path(), Path("/tmp/mkpcli-test.json"))


class TestEnvironmentDefaults(unittest.TestCase):
    def test_production_by_default(self) -> None:
        with patch.dict(os.environ, {"MARKETPLACE_ENV": ""}):
            cfg = Config().with_defaults()
        self.assertEqual(cfg.host, PRODUCTION.host)
        self.assertEqual(cfg.storage_bucket, PRODUCTION.storage_bucket)

    def test_staging_profile(self) -> None:
        with patch.dict(os.environ, {"MARKETPLACE_ENV": "staging"}):
            cfg = Config(host="gtw.example.com").with_defaults()
        self.assertEqual(cfg.host, "gtw.example.com")
        self.assertEqual(cfg.api_host, STAGING.api_host)
        self.assertEqual(cfg.storage_region, "us-east-2")

    def test_saved_environment_selects_profile(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"environment": "staging", "host": None}), encoding="utf-8")
            saved = load_config(path)

        self.assertEqual(saved.environment, "staging")
        self.assertIsNone(saved.host)
        with patch.dict(os.environ, {"MARKETPLACE_ENV": ""}):
            cfg = saved.with_defaults()
        self.assertEqual(cfg.host, STAGING.host)
        self.assertEqual(cfg.storage_bucket, STAGING.storage_bucket)

    def test_env_var_wins_over_saved_environment(self) -> None:
        with patch.dict(os.environ, {"MARKETPLACE_ENV": "production"}):
            cfg = Config(environment="staging").with_defaults()
        self.assertEqual(cfg.api_host, PRODUCTION.api_host)

    def test_unknown_saved_environment_is_dropped(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"environment": "qa"}), encoding="utf-8")
            with self.assertLogs("mkpcli.config", level="WARNING"):
                cfg = load_config(path)
        self.assertIsNone(cfg.environment)

    def test_unset_fields_are_not_saved(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            save_config(Config(environment="staging", token="tok_1234567890"), path)
            saved = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(saved["environment"], "staging")
        self.assertNotIn("host", saved)
        self.assertNotIn("storage_bucket", saved)


class TestRedactToken(unittest.TestCase):
    def test_redact(self) -> None:
        self.assertIsNone(redact_token(None))
        self.assertEqual(redact_token("abcdefgh"), "ab...gh")
        self.assertEqual(redact_token("tok_1234567890"), "tok_12...7890")


if __name__ == "__main__":
    unittest.main()
