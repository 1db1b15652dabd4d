import os
import unittest
from unittest import mock

import requests

from http_fakes import make_response
from vppadmin.cdn.images import ImagesClient, ImagesConfig, load_images_config, normalize_base_url
from vppadmin.search.index_check import SearchConfig, SearchIndexClient, load_search_config

IMAGES = ImagesConfig(account_id="acct-123456", token="img-token", base_url="https://imagedelivery.test/hash")
SEARCH = SearchConfig(app_id="APPID", api_key="search-key", index_name="products_primary")


class TestImagesConfig(unittest.TestCase):
    def test_disabled_flag_means_not_configured(self):
        env = {"CF_IMAGES_ACCOUNT_ID": "a", "CF_IMAGES_TOKEN": "t", "CF_IMAGES_BASE_URL": "https://x"}
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertIsNone(load_images_config())
        with mock.patch.dict(os.environ, dict(env, CF_IMAGES_ENABLED="true"), clear=True):
            self.assertEqual(load_images_config().account_id, "a")

    def test_base_url_normalized(self):
        self.assertEqual(normalize_base_url(" https://imagedelivery.test/h /"), "https://imagedelivery.test/h")


class TestImagesClient(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.client = ImagesClient(IMAGES, session=self.session)

    def test_connectivity_probe(self):
        self.session.request.return_value = make_response(200, {"success": True, "result": {"images": []}}, headers={"cf-ray": "ray-9"})
        result = self.client.test()

        self.assertTrue(result.ok)
        self.assertEqual(result.ray_ids, ["ray-9"])
        method, url = self.session.request.call_args.args
        self.assertEqual(method, "GET")
        self.assertEqual(url, "https://api.cloudflare.com/client/v4/accounts/acct-123456/images/v1")
        self.assertEqual(self.session.request.call_args.kwargs["params"], {"page": 1, "per_page": 1})
        self.assertEqual(self.session.request.call_args.kwargs["headers"]["Authorization"], "Bearer img-token")

    def test_timeout_then_success(self):
        self.session.request.side_effect = [requests.Timeout("slow"), make_response(200, {"success": True})]
        result = self.client.test()
        self.assertTrue(result.ok)
        self.assertEqual(result.attempts, 2)

    def test_timeouts_exhaust_budget(self):
        self.session.request.side_effect = requests.Timeout("slow")
        result = self.client.test()
        self.assertFalse(result.ok)
        self.assertTrue(result.timed_out)
        self.assertEqual(result.attempts, 2)
        self.assertEqual(result.ray_ids, [])

    def test_upload_sends_metadata(self):
        self.session.request.return_value = make_response(200, {"success": True, "result": {"id": "img1"}})
        result = self.client.upload(b"\x89PNG", metadata={"slug": "lamp"})

        self.assertEqual(result.data["result"]["id"], "img1")
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["data"], {"metadata": '{"slug":"lamp"}'})
        self.assertIn("file", kwargs["files"])

    def test_delivery_url(self):
        self.assertEqual(self.client.delivery_url("img 1", "public"), "https://imagedelivery.test/hash/img%201/public")


class TestSearchIndexClient(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.client = SearchIndexClient(SEARCH, session=self.session)

    def test_config_aliases(self):
        env = {"ALGOLIA_APP_ID": "APP", "ALGOLIA_API_KEY": "k", "ALGOLIA_INDEX": "idx"}
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_search_config()
        self.assertEqual((config.app_id, config.index_name), ("APP", "idx"))
        self.assertNotIn("k'", repr(config))

    def test_index_found(self):
        self.session.get.return_value = make_response(200, {"items": [{"name": "other"}, {"name": "products_primary"}]})
        result = self.client.verify_index()

        self.assertTrue(result.ok)
        self.assertEqual(result.to_response(), {"ok": True, "latency_ms": result.latency_ms, "ray_ids": []})
        url = self.session.get.call_args.args[0]
        self.assertEqual(url, "https://APPID-dsn.algolia.net/1/indexes")
        headers = self.session.get.call_args.kwargs["headers"]
        self.assertEqual(headers["X-Algolia-API-Key"], "search-key")

    def test_reachable_but_index_missing(self):
        self.session.get.return_value = make_response(200, {"items": [{"name": "other"}]})
        result = self.client.verify_index()
        self.assertFalse(result.ok)
        self.assertEqual(result.error_code, "index_not_found")

    def test_rejected_credentials(self):
        self.session.get.return_value = make_response(403, {"message": "Invalid Application-ID or API key"})
        result = self.client.verify_index()
        self.assertEqual(result.error_code, "auth_failed")
        self.assertEqual(result.attempts, 1)
        self.assertNotIn("search-key", result.to_response()["details"])

    def test_timeout_is_reported(self):
        self.session.get.side_effect = requests.Timeout("slow")
        result = self.client.verify_index()
        self.assertEqual(result.error_code, "timeout")
        self.assertEqual(result.attempts, 1)


if __name__ == "__main__":
    unittest.main()
