import os
import unittest
from unittest import mock

from vppadmin.config.env import (
    MissingEnvironmentVariableError,
    first_env,
    load_credentials,
    read_bool_env,
    read_env,
    read_int_env,
    require_env,
)


FIELDS = {"host": "T_HOST", "user": "T_USER", "password": "T_PASSWORD"}


class TestEnvReader(unittest.TestCase):
    def test_blank_reads_as_unset(self):
        with mock.patch.dict(os.environ, {"T_HOST": "   "}, clear=True):
            self.assertIsNone(read_env("T_HOST"))

    def test_values_are_trimmed(self):
        with mock.patch.dict(os.environ, {"T_HOST": "  db.internal \n"}, clear=True):
            self.assertEqual(read_env("T_HOST"), "db.internal")

    def test_require_env_lists_every_missing_name(self):
        with mock.patch.dict(os.environ, {"T_HOST": "db"}, clear=True):
            with self.assertRaises(MissingEnvironmentVariableError) as ctx:
                require_env(["T_HOST", "T_USER", "T_PASSWORD"])
        self.assertEqual(ctx.exception.variables, ["T_USER", "T_PASSWORD"])
        self.assertIn("T_USER, T_PASSWORD", str(ctx.exception))

    def test_require_env_accepts_single_name(self):
        with mock.patch.dict(os.environ, {"T_HOST": "db"}, clear=True):
            self.assertEqual(require_env("T_HOST"), {"T_HOST": "db"})

    def test_bool_and_int_parsing(self):
        env = {"T_ON": "Yes", "T_OFF": "0", "T_ODD": "maybe", "T_PORT": "5432", "T_BAD": "x"}
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertTrue(read_bool_env("T_ON"))
            self.assertFalse(read_bool_env("T_OFF"))
            self.assertIsNone(read_bool_env("T_ODD"))
            self.assertEqual(read_int_env("T_PORT", 1), 5432)
            self.assertEqual(read_int_env("T_BAD", 7), 7)
            self.assertEqual(read_int_env("T_MISSING", 9), 9)

    def test_first_env_prefers_earlier_names(self):
        with mock.patch.dict(os.environ, {"B": "second", "C": "third"}, clear=True):
            self.assertEqual(first_env("A", "B", "C"), "second")
            self.assertIsNone(first_env("A"))


class TestLoadCredentials(unittest.TestCase):
    def test_complete_bundle(self):
        env = {"T_HOST": "db", "T_USER": "admin", "T_PASSWORD": "pw"}
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertEqual(load_credentials(FIELDS), {"host": "db", "user": "admin", "password": "pw"})

    def test_never_partially_filled(self):
        cases = [
            {"T_HOST": "db", "T_USER": "admin"},
            {"T_HOST": "db", "T_USER": "admin", "T_PASSWORD": ""},
            {"T_HOST": " ", "T_USER": "admin", "T_PASSWORD": "pw"},
            {},
        ]
        for env in cases:
            with self.subTest(env=env):
                with mock.patch.dict(os.environ, env, clear=True):
                    self.assertIsNone(load_credentials(FIELDS))


if __name__ == "__main__":
    unittest.main()
