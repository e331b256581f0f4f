import os
import sys
import unittest

import keyring
import yaml
from loguru import logger

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig
from log_setup import configure_logging
from settings_schema import validate_settings


class DummyKeyring(keyring.backend.KeyringBackend):
    priority = 1

    def __init__(self):
        self.store = {}

    def get_password(self, service, username):
        return self.store.get((service, username))

    def set_password(self, service, username, password):
        self.store[(service, username)] = password

    def delete_password(self, service, username):
        self.store.pop((service, username), None)


class SettingsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.path = "test_config_settings.yaml"
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        os.environ.pop("ENCRYPT_SETTINGS", None)

    def test_defaults_when_file_missing(self) -> None:
        settings = YamlConfig(self.path).settings()
        self.assertEqual(settings.weight_unit, "kg")
        self.assertFalse(settings.strict_exercises)
        self.assertEqual(settings.tabata_work_seconds, 20)
        self.assertEqual(settings.default_category, "STRENGTH")

    def test_save_and_load(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({"weight_unit": "lb", "strict_exercises": True})
        settings = cfg.settings()
        self.assertEqual(settings.weight_unit, "lb")
        self.assertTrue(settings.strict_exercises)

    def test_invalid_settings_rejected(self) -> None:
        with self.assertRaises(ValueError):
            YamlConfig(self.path).save({"weight_unit": "stone"})
        with self.assertRaises(ValueError):
            validate_settings({"log_level": "LOUD"})
        self.assertFalse(os.path.exists(self.path))

    def test_encrypted_db_url(self) -> None:
        keyring.set_keyring(DummyKeyring())
        os.environ["ENCRYPT_SETTINGS"] = "1"
        cfg = YamlConfig(self.path)
        cfg.save({"db_url": "sqlite:///secret.db", "weight_unit": "kg"})
        with open(self.path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        self.assertIs(raw["db_url"], True)
        self.assertEqual(cfg.load()["db_url"], "sqlite:///secret.db")


class LoggingTest(unittest.TestCase):
    def tearDown(self) -> None:
        configure_logging("WARNING")

    def test_file_sink(self) -> None:
        log_file = os.path.join("test_logs", "training.log")
        try:
            configure_logging("INFO", log_file)
            logger.info("recorded set")
            logger.complete()
            with open(log_file, "r", encoding="utf-8") as f:
                self.assertIn("recorded set", f.read())
        finally:
            logger.remove()
            if os.path.exists(log_file):
                os.remove(log_file)
            if os.path.isdir("test_logs"):
                os.rmdir("test_logs")


if __name__ == "__main__":
    unittest.main()
