import os
import tempfile
import unittest

from tests.helpers.temp_db import TempDbSandbox, assert_safe_temp_db_path, open_sqlite_temp_connection


class TempDbHelperTest(unittest.TestCase):
    def test_temp_db_create_and_cleanup(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_sanity")
        self.assertTrue(os.path.exists(sandbox.temp_dir))
        self.assertTrue(sandbox.db_path.startswith(os.path.realpath(tempfile.gettempdir())))

        conn = open_sqlite_temp_connection(sandbox.db_path)
        try:
            conn.execute("CREATE TABLE IF NOT EXISTS sanity (id INTEGER PRIMARY KEY, value TEXT)")
            conn.execute("INSERT INTO sanity (value) VALUES ('ok')")
            self.assertEqual(int(conn.execute("SELECT COUNT(*) FROM sanity").fetchone()[0]), 1)
        finally:
            conn.close()

        sandbox.cleanup()
        self.assertFalse(os.path.exists(sandbox.temp_dir))

    def test_disallow_workspace_paths(self) -> None:
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(os.path.join(os.getcwd(), "central_aprovacao_test.db"))


if __name__ == "__main__":
    unittest.main()
