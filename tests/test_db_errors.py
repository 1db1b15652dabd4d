import unittest

import requests
from psycopg_pool import PoolTimeout

from vppadmin.storage.db_errors import DbErrorInfo, classify_http_status, classify_message, to_db_error_info


class DriverError(Exception):
    def __init__(self, message, code=None, sqlstate=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if sqlstate is not None:
            self.sqlstate = sqlstate


class TestDbErrorClassification(unittest.TestCase):
    def test_access_denied_code_is_auth_failed(self):
        info = to_db_error_info({"code": "ER_ACCESS_DENIED_ERROR", "message": "Access denied for user"})
        self.assertEqual(info.kind, "auth_failed")
        self.assertEqual(info.message, "Access denied for user")

    def test_message_only_timeout(self):
        info = to_db_error_info("Connection timed out after 30000ms")
        self.assertEqual(info.kind, "timeout")

    def test_code_wins_over_message(self):
        info = to_db_error_info(DriverError("permission denied for table products", code="42P01"))
        self.assertEqual(info.kind, "sql_error")

    def test_postgres_sqlstates(self):
        self.assertEqual(to_db_error_info(DriverError("x", sqlstate="28P01")).kind, "auth_failed")
        self.assertEqual(to_db_error_info(DriverError("x", sqlstate="08006")).kind, "timeout")
        self.assertEqual(to_db_error_info(DriverError("x", sqlstate="57014")).kind, "timeout")
        info = to_db_error_info(DriverError("syntax error", sqlstate="42601"))
        self.assertEqual(info.kind, "sql_error")
        self.assertEqual(info.sql_state, "42601")

    def test_timeout_exception_types(self):
        self.assertEqual(to_db_error_info(PoolTimeout("couldn't get a connection")).kind, "timeout")
        self.assertEqual(to_db_error_info(requests.Timeout("read timeout")).kind, "timeout")

    def test_unknown_reports_as_sql_error(self):
        info = to_db_error_info(RuntimeError("something odd"))
        self.assertEqual(info.kind, "unknown")
        self.assertEqual(info.public_code, "sql_error")
        self.assertEqual(DbErrorInfo(kind="timeout", message="x").public_code, "timeout")

    def test_none_and_message_fallbacks(self):
        self.assertEqual(to_db_error_info(None).kind, "unknown")
        self.assertEqual(classify_message("Authentication failed for user"), "auth_failed")
        self.assertEqual(classify_message(""), "unknown")

    def test_http_status_hints(self):
        self.assertEqual(classify_http_status(403), "auth_failed")
        self.assertEqual(classify_http_status(524), "timeout")
        self.assertIsNone(classify_http_status(500))


if __name__ == "__main__":
    unittest.main()
