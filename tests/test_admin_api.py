import os
import unittest
from unittest import mock

import requests
from psycopg_pool import PoolTimeout

from admin_api import AdminServices
from http_fakes import make_response
from vppadmin.cdn.images import ImagesResponse
from vppadmin.cdn.purge import PurgeResult
from vppadmin.cdn.purge_batches import PurgeBatchStore
from vppadmin.search.index_check import IndexCheckResult
from vppadmin.storage.columns import FieldValidationError
from vppadmin.storage.metrics import DbProbeResult
from vppadmin.storage.pg_pool import DatabaseProvider
from vppadmin.storage.posts import InvalidCategoryError, SlugLockedError
from vppadmin.storage.rows import RowUpdateResult
from vppadmin.auth.session import issue_admin_session_token
from web_app import create_app

PASSWORD = "s3cret-admin"
BASE_ENV = {
    "ADMIN_PASSWORD": PASSWORD,
    "PG_HOST": "db.test",
    "PG_PORT": "5432",
    "PG_USER": "vpp",
    "PG_PASSWORD": "pg-secret",
    "PG_DATABASE": "catalog",
    "CLOUDFLARE_ZONE_ID": "zone1234567890",
    "CLOUDFLARE_API_TOKEN": "cf-token",
    "CF_IMAGES_ENABLED": "true",
    "CF_IMAGES_ACCOUNT_ID": "acct-123456",
    "CF_IMAGES_TOKEN": "img-token",
    "CF_IMAGES_BASE_URL": "https://imagedelivery.test/hash",
    "ALGOLIA_APP_ID": "APPID",
    "ALGOLIA_ADMIN_API_KEY": "search-key",
    "ALGOLIA_INDEX_PRIMARY": "products_primary",
}


def purge_ok(ray="ray-1", attempts=1):
    return PurgeResult(ok=True, status=200, ray_ids=[ray], latency_ms=12, attempts=attempts, mode="selective")


class AdminApiTestCase(unittest.TestCase):
    env = BASE_ENV

    def setUp(self):
        patcher = mock.patch.dict(os.environ, self.env, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.db = mock.Mock(name="database")
        self.purge_factory = mock.Mock(name="purge_client_factory")
        self.purge_client = self.purge_factory.return_value
        self.images_factory = mock.Mock(name="images_client_factory")
        self.search_factory = mock.Mock(name="search_client_factory")
        self.http = mock.Mock(name="http")
        self.services = AdminServices(
            purge_batches=PurgeBatchStore(),
            databases=DatabaseProvider(lambda credentials: self.db),
            http=self.http,
            purge_client_factory=self.purge_factory,
            images_client_factory=self.images_factory,
            search_client_factory=self.search_factory,
        )
        self.app = create_app({"TESTING": True, "RATELIMIT_ENABLED": False}, services=self.services)
        self.client = self.app.test_client(use_cookies=False)
        self.headers = {"Authorization": f"Bearer {issue_admin_session_token(PASSWORD)}"}

    def post(self, path, body=None):
        return self.client.post(path, json=body if body is not None else {}, headers=self.headers)


class TestConsole(AdminApiTestCase):
    def test_summary_lists_integrations(self):
        response = self.client.get("/admin", headers=self.headers)
        body = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertTrue(all(body["integrations"].values()))
        self.assertIsNone(body["last_purge_batch"])
        self.assertNotIn("cf-token", response.get_data(as_text=True))


class TestPurgeEndpoints(AdminApiTestCase):
    def test_replay_without_batch(self):
        response = self.post("/api/admin/connectivity/purge/last-batch")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json(), {"ok": False, "error_code": "no_previous_batch", "ray_ids": []})
        self.purge_client.purge.assert_not_called()

    def test_sitemap_purge_records_batch_then_replays_it(self):
        self.purge_client.purge.return_value = [purge_ok("r1")]
        response = self.post(
            "/api/admin/connectivity/purge/sitemaps",
            {"urls": ["https://shop.test/landing", 7], "productSlugs": ["lamp"]},
        )
        body = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(body, {"ok": True, "ray_ids": ["r1"], "latency_ms": 12, "attempts": 1})

        urls = self.purge_client.purge.call_args.args[0]
        self.assertEqual(urls, ("http://localhost/sitemap.xml", "http://localhost/sitemap-products.xml", "https://shop.test/landing"))
        self.assertTrue(self.purge_client.purge.call_args.kwargs["retry_on_timeout"])

        self.purge_client.purge.return_value = [purge_ok("r2", attempts=2)]
        replay = self.post("/api/admin/connectivity/purge/last-batch").get_json()
        self.assertEqual(replay["ray_ids"], ["r2"])
        self.assertEqual(replay["attempts"], 2)
        self.assertEqual(self.purge_client.purge.call_args.args[0], urls)

    def test_forwarded_host_is_used_as_site_origin(self):
        self.purge_client.purge.return_value = [purge_ok()]
        self.client.post(
            "/api/admin/connectivity/purge/sitemaps",
            json={},
            headers=dict(self.headers, **{"X-Forwarded-Host": "shop.example", "X-Forwarded-Proto": "https"}),
        )
        self.assertEqual(self.purge_client.purge.call_args.args[0][0], "https://shop.example/sitemap.xml")

    def test_purge_everything_failure(self):
        self.purge_client.purge_everything.return_value = PurgeResult(
            ok=False, status=0, ray_ids=[], latency_ms=25000, attempts=1, mode="everything", timed_out=True
        )
        body = self.post("/api/admin/connectivity/purge/everything").get_json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["error_code"], "timeout")

    def test_missing_cloudflare_env(self):
        with mock.patch.dict(os.environ, {"CLOUDFLARE_API_TOKEN": ""}):
            response = self.post("/api/admin/connectivity/purge/everything")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.get_json()["error_code"], "missing_env")


class TestConnectivityEndpoints(AdminApiTestCase):
    def test_db_probe(self):
        with mock.patch("admin_api.probe_database", return_value=DbProbeResult(ok=True, latency_ms=4, published=10)) as probe:
            body = self.client.get("/api/admin/connectivity/db", headers=self.headers).get_json()
        self.assertEqual(body["published"], 10)
        self.assertIs(probe.call_args.args[0], self.db)

    def test_db_missing_env(self):
        with mock.patch.dict(os.environ, {"PG_HOST": ""}):
            response = self.client.get("/api/admin/connectivity/db", headers=self.headers)
        self.assertEqual(response.status_code, 503)

    def test_images(self):
        self.images_factory.return_value.test.return_value = ImagesResponse(
            ok=False, status=0, attempts=2, latency_ms=40000, timed_out=True
        )
        body = self.client.get("/api/admin/connectivity/images", headers=self.headers).get_json()
        self.assertEqual(body, {"ok": False, "latency_ms": 40000, "ray_ids": [], "error_code": "timeout"})

    def test_search(self):
        self.search_factory.return_value.verify_index.return_value = IndexCheckResult(
            ok=False, latency_ms=30, error_code="index_not_found"
        )
        body = self.post("/api/admin/connectivity/search").get_json()
        self.assertEqual(body["error_code"], "index_not_found")

    def test_sitemap_probe(self):
        self.http.get.return_value = make_response(200)
        body = self.post("/api/admin/connectivity/revalidate-sitemap").get_json()
        self.assertTrue(body["ok"])
        self.assertEqual(self.http.get.call_args.args[0], "http://localhost/sitemap.xml")

        self.http.get.side_effect = requests.Timeout("slow")
        self.assertEqual(self.post("/api/admin/connectivity/revalidate-sitemap").get_json()["error_code"], "timeout")

    def test_unexpected_errors_are_wrapped(self):
        self.search_factory.side_effect = RuntimeError("boom")
        response = self.post("/api/admin/connectivity/search")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()["error_code"], "unexpected_error")
        self.assertNotIn("boom", response.get_data(as_text=True))


class DriverError(Exception):
    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestProductEndpoint(AdminApiTestCase):
    def update(self, body):
        return self.post("/api/admin/products", body)

    def test_success(self):
        result = RowUpdateResult(found=True, rows_affected=1, row={"slug": "abc", "title_h1": "New"})
        with mock.patch("admin_api.update_product", return_value=result) as update:
            response = self.update({"slug": " abc ", "title_h1": "New", "unknown": "x"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["product"]["title_h1"], "New")
        payload = update.call_args.args[1]
        self.assertEqual(payload, {"title_h1": "New", "slug": "abc"})
        self.assertIsNotNone(update.call_args.kwargs["invalidator"])

    def test_request_validation(self):
        self.assertEqual(self.update({"title_h1": "x"}).get_json()["error_code"], "missing_slug")
        self.assertEqual(self.update({"slug": "abc", "unknown": 1}).get_json()["error_code"], "no_updates")
        bad = self.client.post("/api/admin/products", data="[1, 2]", content_type="application/json", headers=self.headers)
        self.assertEqual(bad.status_code, 400)

    def test_error_statuses(self):
        cases = [
            (RowUpdateResult(found=False), 404, "product_not_found"),
            (FieldValidationError("price_amount", "Field price_amount must be a number."), 400, "invalid_payload"),
            (DriverError("password authentication failed", "28P01"), 401, "auth_failed"),
            (PoolTimeout("couldn't get a connection"), 504, "timeout"),
            (DriverError("relation does not exist", "42P01"), 500, "sql_error"),
        ]
        for outcome, status, code in cases:
            with self.subTest(code=code):
                kwargs = {"side_effect": outcome} if isinstance(outcome, Exception) else {"return_value": outcome}
                with mock.patch("admin_api.update_product", **kwargs):
                    response = self.update({"slug": "abc", "title_h1": "x"})
                self.assertEqual(response.status_code, status)
                self.assertEqual(response.get_json()["error_code"], code)

    def test_write_test_reports_noop(self):
        result = RowUpdateResult(found=True, rows_affected=0, row={"slug": "abc"})
        with mock.patch("admin_api.update_product", return_value=result) as update:
            response = self.post(
                "/api/admin/connectivity/db/update",
                {"slug": "abc", "title_h1": "Same", "price_amount": "1"},
            )
        self.assertEqual(response.get_json()["error_code"], "no_updates")
        self.assertEqual(update.call_args.args[1], {"title_h1": "Same", "slug": "abc"})


class TestBlogEndpoint(AdminApiTestCase):
    def test_requires_auth(self):
        response = self.client.put("/api/blog/posts/hello", json={"title": "x"})
        self.assertEqual(response.status_code, 401)

    def test_statuses(self):
        cases = [
            (SlugLockedError(), 409, "slug_locked"),
            (InvalidCategoryError("missing"), 400, "invalid_category"),
            (RowUpdateResult(found=False), 404, "post_not_found"),
        ]
        for outcome, status, code in cases:
            with self.subTest(code=code):
                kwargs = {"side_effect": outcome} if isinstance(outcome, Exception) else {"return_value": outcome}
                with mock.patch("admin_api.update_post", **kwargs):
                    response = self.client.put("/api/blog/posts/hello", json={"title": "x"}, headers=self.headers)
                self.assertEqual(response.status_code, status)
                self.assertEqual(response.get_json()["error_code"], code)

    def test_success(self):
        result = RowUpdateResult(found=True, rows_affected=1, row={"slug": "hello", "title": "x"})
        with mock.patch("admin_api.update_post", return_value=result) as update:
            response = self.client.put("/api/blog/posts/hello", json={"title": "x"}, headers=self.headers)
        self.assertEqual(response.get_json()["post"]["title"], "x")
        self.assertEqual(update.call_args.args[1:3], ("hello", {"title": "x"}))


if __name__ == "__main__":
    unittest.main()
