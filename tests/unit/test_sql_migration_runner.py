import sys
import tempfile
from pathlib import Path
import unittest
from unittest import mock

from sqlalchemy import create_engine, text

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.infrastructure.db.sql.migrate import (
    MigrationFilePlan,
    _split_sql_statements,
    adapt_statement,
    build_linear_migration_plan,
    discover_linear_migration_files,
    execute_linear_migration_plan,
)


class SqlMigrationRunnerTests(unittest.TestCase):
    def test_splitter_handles_semicolons_inside_strings_and_comments(self) -> None:
        statements = _split_sql_statements(
            "-- seed; not a statement\n"
            "INSERT INTO demo(txt) VALUES ('alpha;beta');\n"
            "/* block; comment */ INSERT INTO demo(txt) VALUES ('gamma')"
        )

        self.assertEqual(2, len(statements))
        self.assertIn("alpha;beta", statements[0])
        self.assertEqual("INSERT INTO demo(txt) VALUES ('gamma')", statements[1])

    def test_adapt_statement_per_dialect(self) -> None:
        statement = "CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT)"

        self.assertEqual(statement, adapt_statement(statement, "sqlite"))
        self.assertIn("INT AUTO_INCREMENT PRIMARY KEY", adapt_statement(statement, "mysql"))
        self.assertIn("SERIAL PRIMARY KEY", adapt_statement(statement, "postgresql"))

    def test_discover_linear_migrations_ignores_underscore_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            migration_dir = Path(tmp) / "migrations"
            migration_dir.mkdir(parents=True, exist_ok=True)
            (migration_dir / "001_first.sql").write_text("SELECT 1;", encoding="utf-8")
            (migration_dir / "_scratch.sql").write_text("SELECT 1;", encoding="utf-8")

            with mock.patch("lifesim.infrastructure.db.sql.migrate._migrations_dir", return_value=migration_dir):
                files = discover_linear_migration_files()

            self.assertEqual(["001_first.sql"], [path.name for path in files])

    def test_build_linear_plan_validates_sequential_numbering(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            migration_dir = Path(tmp) / "migrations"
            migration_dir.mkdir(parents=True, exist_ok=True)
            (migration_dir / "001_first.sql").write_text("SELECT 1;", encoding="utf-8")
            (migration_dir / "003_third.sql").write_text("SELECT 3;", encoding="utf-8")

            with self.assertRaises(ValueError):
                build_linear_migration_plan(migration_dir)

    def test_bad_filename_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            migration_dir = Path(tmp)
            (migration_dir / "first.sql").write_text("SELECT 1;", encoding="utf-8")

            with self.assertRaises(ValueError):
                discover_linear_migration_files(migration_dir)

    def test_execute_linear_plan_tracks_schema_migrations(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_url = f"sqlite+pysqlite:///{Path(tmp) / 'migrate_test.db'}"
            f1 = Path(tmp) / "001_first.sql"
            f2 = Path(tmp) / "002_second.sql"

            file_plans = [
                MigrationFilePlan(
                    file_path=f1,
                    statements=["CREATE TABLE IF NOT EXISTS demo(id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT)"],
                ),
                MigrationFilePlan(file_path=f2, statements=["INSERT INTO demo(name) VALUES ('one')"]),
            ]

            applied_files, executed = execute_linear_migration_plan(file_plans, db_url)
            self.assertEqual(2, applied_files)
            self.assertEqual(2, executed)

            applied_files_second, executed_second = execute_linear_migration_plan(file_plans, db_url)
            self.assertEqual(0, applied_files_second)
            self.assertEqual(0, executed_second)

            engine = create_engine(db_url, future=True)
            with engine.begin() as conn:
                rows = conn.execute(text("SELECT migration_name FROM schema_migrations ORDER BY migration_name")).all()
                self.assertEqual([("001_first.sql",), ("002_second.sql",)], [(row[0],) for row in rows])
                self.assertEqual(1, conn.execute(text("SELECT COUNT(*) FROM demo")).scalar_one())
            engine.dispose()

    def test_bundled_plan_parses(self) -> None:
        plan = build_linear_migration_plan()

        self.assertEqual(["001_initial_schema.sql", "002_seed_store_managers.sql", "003_friendships.sql"], [item.file_path.name for item in plan])
        self.assertTrue(all(item.statements for item in plan))


if __name__ == "__main__":
    unittest.main()
