import json
import os
import sqlite3
import unittest

from central_aprovacao import create_app
from central_aprovacao.config import Config
from central_aprovacao.db import close_db
from central_aprovacao.db_migrations import to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox


def _table_exists(db_path: str, table_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="migrations")
        self.db_path = self._temp_db.db_path
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self._temp_db.cleanup()

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        config = self._temp_db.make_config(
            Config,
            TESTING=testing,
            DB_AUTO_INIT=db_auto_init,
            LOG_JSON=False,
            ERP_TENANTS=None,
        )
        return create_app(config)

    def test_schema_not_created_without_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()
        self.assertFalse(_table_exists(self.db_path, "erp_tenants"))

    def test_schema_created_with_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()
        self.assertTrue(_table_exists(self.db_path, "erp_tenants"))

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "erp_tenants"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.db_path, "erp_tenants"))

    def test_flask_db_stamp_after_auto_init(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()
        runner = app.test_cli_runner()

        stamp_result = runner.invoke(args=["db", "stamp"])
        self.assertEqual(stamp_result.exit_code, 0, msg=stamp_result.output)
        self.assertTrue(_table_exists(self.db_path, "alembic_version"))

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)

    def test_sqlalchemy_url_normalization(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@h/db"), "postgresql://u:p@h/db")
        self.assertEqual(to_sqlalchemy_url("postgresql://u:p@h/db"), "postgresql://u:p@h/db")
        self.assertTrue(to_sqlalchemy_url("/tmp/x.db").startswith("sqlite:///"))
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


class TenantCliTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="tenant_cli")
        config = self._temp_db.make_config(Config, TESTING=True, LOG_JSON=False, ERP_TENANTS=None)
        self.app = create_app(config)
        self.runner = self.app.test_cli_runner()
        self.source = os.path.join(self._temp_db.temp_dir, "tenants.json")
        with open(self.source, "w", encoding="utf-8") as handle:
            json.dump(
                [
                    {"tenant_id": "br", "base_url": "https://br.erp.test/rest", "password": "segredo", "is_default": True},
                    {"tenant_id": "cl", "base_url": "https://cl.erp.test/rest", "is_active": False},
                ],
                handle,
            )

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_load_then_list(self) -> None:
        loaded = self.runner.invoke(args=["tenants", "load", self.source])
        self.assertEqual(loaded.exit_code, 0, msg=loaded.output)
        self.assertIn("2 tenant(s)", loaded.output)

        listed = self.runner.invoke(args=["tenants", "list", "--json"])
        self.assertEqual(listed.exit_code, 0, msg=listed.output)
        rows = json.loads(listed.output)
        self.assertEqual([row["tenant_id"] for row in rows], ["BR", "CL"])
        self.assertNotIn("segredo", listed.output)

        plain = self.runner.invoke(args=["tenants", "list"])
        self.assertIn("padrao", plain.output)
        self.assertIn("inativo", plain.output)

    def test_load_rejects_invalid_file(self) -> None:
        with open(self.source, "w", encoding="utf-8") as handle:
            handle.write("nao e json")
        result = self.runner.invoke(args=["tenants", "load", self.source])
        self.assertNotEqual(result.exit_code, 0)


if __name__ == "__main__":
    unittest.main()
