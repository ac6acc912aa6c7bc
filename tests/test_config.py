import json
import os
import tempfile
import unittest
from unittest import mock

from finder.config import Settings, get_settings, load_platforms
from finder.core.errors import RunError
from finder.core.normalize import SearchQuery
from finder.providers import preflight, reset_client, searchers_for_query
from finder.providers.google_cse import GoogleSearchClient


class SettingsTests(unittest.TestCase):
    def test_env_overrides_and_bad_values(self):
        env = {
            "GOOGLE_SEARCH_API_KEY": "k",
            "GOOGLE_SEARCH_ENGINE_ID": "cx",
            "FINDER_PLATFORM_TIMEOUT": "7.5",
            "FINDER_MAX_PLATFORMS": "not-a-number",
            "FINDER_DEDUP_KEY": " Composite ",
        }
        with mock.patch.dict(os.environ, env):
            s = Settings.from_env()
        self.assertEqual(s.platform_timeout, 7.5)
        self.assertEqual(s.max_platforms, 5)
        self.assertEqual(s.dedup_key, "composite")
        self.assertTrue(s.has_search_credentials)

    def test_load_platforms_accepts_list_or_object(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "platforms.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"platforms": ["Lever.co", " ", "ashbyhq.com"]}, f)
            self.assertEqual(load_platforms(path), ["lever.co", "ashbyhq.com"])

            with open(path, "w", encoding="utf-8") as f:
                json.dump(["greenhouse.io"], f)
            self.assertEqual(load_platforms(path), ["greenhouse.io"])


class ProviderRegistryTests(unittest.TestCase):
    def tearDown(self):
        reset_client(None)
        get_settings.cache_clear()

    def test_site_all_is_capped(self):
        get_settings.cache_clear()
        with mock.patch.dict(os.environ, {"FINDER_MAX_PLATFORMS": "3"}):
            names = [s.name for s in searchers_for_query(SearchQuery(query="x"))]
        self.assertEqual(names, ["greenhouse.io", "lever.co", "ashbyhq.com"])

    def test_unknown_site_gets_a_generic_searcher(self):
        (searcher,) = searchers_for_query(SearchQuery(query="x", site="example-careers.com"))
        self.assertEqual(searcher.name, "example-careers.com")

    def test_preflight(self):
        reset_client(GoogleSearchClient("", ""))
        with self.assertRaises(RunError):
            preflight(SearchQuery(query="x"))

        client = GoogleSearchClient("k", "cx", quota_cooldown=60)
        reset_client(client)
        preflight(SearchQuery(query="x"))

        client._block()
        with self.assertRaises(RunError) as ctx:
            preflight(SearchQuery(query="x"))
        self.assertIn("quota", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
