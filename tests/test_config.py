import json
import tempfile
import unittest
from pathlib import Path

from manifest_importer.config import (
    ENV_API_KEY,
    ENV_GEOCODER_URL,
    ImporterConfig,
    load_config,
    starter_config,
)
from manifest_importer.geocoding import GEOCODER_URL


class LoadConfigTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, name, payload):
        path = self.tmpdir / name
        path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")
        return path

    def test_defaults(self):
        config = load_config(env={})
        self.assertEqual(config.geocoder_url, GEOCODER_URL)
        self.assertEqual(config.api_key, "")
        self.assertEqual(config.batch_size, 100)
        self.assertEqual(config.country, "Singapore")
        self.assertEqual(config.profile, "delivery")

    def test_file_then_env_then_overrides(self):
        path = self.write("cfg.json", {"api_key": "from-file", "batch_size": 10, "profile": "logistics"})
        config = load_config(path, env={ENV_API_KEY: "from-env", ENV_GEOCODER_URL: "http://localhost:9000/"})
        self.assertEqual(config.api_key, "from-env")
        self.assertEqual(config.geocoder_url, "http://localhost:9000/")
        self.assertEqual(config.batch_size, 10)
        self.assertEqual(config.profile, "logistics")

        config = load_config(path, env={ENV_API_KEY: "from-env"}, api_key="explicit", batch_size=None)
        self.assertEqual(config.api_key, "explicit")
        self.assertEqual(config.batch_size, 10)

    def test_yaml_is_rejected(self):
        path = self.write("cfg.yaml", "api_key: x\n")
        with self.assertRaisesRegex(ValueError, "YAML configs are not supported yet"):
            load_config(path, env={})

    def test_unknown_keys_and_bad_values_are_rejected(self):
        with self.assertRaisesRegex(ValueError, "Unknown config keys: colour"):
            load_config(self.write("a.json", {"colour": "red"}), env={})
        with self.assertRaisesRegex(ValueError, "Config root must be a JSON object"):
            load_config(self.write("b.json", [1, 2]), env={})
        with self.assertRaisesRegex(ValueError, "batch_size must be at least 1"):
            load_config(env={}, batch_size=0)
        with self.assertRaisesRegex(ValueError, "Unknown profile"):
            load_config(env={}, profile="retail")
        with self.assertRaises(FileNotFoundError):
            load_config(self.tmpdir / "missing.json", env={})

    def test_public_dict_masks_api_key(self):
        self.assertEqual(ImporterConfig(api_key="secret").public_dict()["api_key"], "***")
        self.assertEqual(ImporterConfig().public_dict()["api_key"], "")

    def test_starter_config_round_trips(self):
        path = self.write("starter.json", starter_config())
        self.assertEqual(load_config(path, env={}), ImporterConfig().validate())


if __name__ == "__main__":
    unittest.main()
