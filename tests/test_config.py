import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import os
import unittest
from unittest import mock

from chatfold.config import (
    DEFAULT_MODEL,
    get_openai_provider,
    get_relay_provider,
    get_relay_settings,
    reasoning_for,
    resolve_model,
)
from chatfold.errors import ConfigError
from chatfold.openai.client import create_client


class TestConfig(unittest.TestCase):
    def test_openai_provider_from_env(self):
        env = {"OPENAI_API_KEY": "sk-test", "OPENAI_BASE_URL": "http://llm.test/v1"}
        with mock.patch.dict(os.environ, env, clear=True):
            provider = get_openai_provider(load_env=False)
        self.assertEqual(provider["name"], "openai")
        self.assertEqual(provider["api_key"], "sk-test")
        self.assertEqual(provider["base_url"], "http://llm.test/v1")

    def test_relay_provider_requires_url(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigError):
                get_relay_provider(load_env=False)

    def test_relay_settings(self):
        env = {"CHATFOLD_RELAY_PORT": "9001", "OPENAI_API_KEY": "sk-test"}
        with mock.patch.dict(os.environ, env, clear=True):
            settings = get_relay_settings(load_env=False)
        self.assertEqual(settings["port"], 9001)
        self.assertEqual(settings["host"], "127.0.0.1")
        self.assertEqual(settings["upstream"]["api_key"], "sk-test")

        with mock.patch.dict(os.environ, {"CHATFOLD_RELAY_PORT": "http"}, clear=True):
            with self.assertRaises(ConfigError):
                get_relay_settings(load_env=False)

    def test_model_resolution(self):
        self.assertEqual(resolve_model(None), DEFAULT_MODEL)
        self.assertEqual(resolve_model({"model": "gpt-test"}), "gpt-test")
        self.assertEqual(reasoning_for("o3-mini"), {"summary": "detailed"})
        self.assertEqual(reasoning_for("gpt-5-nano"), {"summary": "detailed"})
        self.assertIsNone(reasoning_for("gpt-4.1"))
        self.assertEqual(reasoning_for("o4-mini"), {"summary": "detailed"})
        self.assertIsNone(reasoning_for("omni-moderation-latest"))
        self.assertIsNone(reasoning_for("openrouter/auto"))

    def test_client_requires_api_key(self):
        with self.assertRaises(ConfigError):
            create_client({"name": "openai", "base_url": None, "api_key": None})

    def test_client_uses_provider(self):
        client = create_client(
            {"name": "openai", "base_url": "http://llm.test/v1", "api_key": "sk-test"},
            max_retries=0,
        )
        self.assertEqual(str(client.base_url), "http://llm.test/v1/")
        self.assertEqual(client.max_retries, 0)


if __name__ == "__main__":
    unittest.main()
