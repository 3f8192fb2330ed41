"""Tests for app.services.health: liveness payload, readiness timeouts and the database engine."""

import asyncio
import time
import unittest

from factories import make_session_factory

from app.core.config import Settings
from app.core.database import engine
from app.services.health import database_check, liveness, readiness, run_check


async def _ok() -> None:
    return None


async def _hangs() -> None:
    await asyncio.Event().wait()


async def _fails() -> None:
    raise ConnectionError("could not connect to server at 10.0.0.5 user=postgres")


class TestLiveness(unittest.TestCase):
    def test_reports_service_identity(self) -> None:
        settings = Settings(SERVICE_NAME="holiday-heroes", SERVICE_VERSION="2.3.4")
        result = liveness(settings)
        self.assertEqual(result.status, "ok")
        self.assertEqual(result.service, "holiday-heroes")
        self.assertEqual(result.version, "2.3.4")
        self.assertGreaterEqual(result.uptime, 0)


class TestReadiness(unittest.IsolatedAsyncioTestCase):
    async def test_all_healthy_is_ready(self) -> None:
        result = await readiness({"database": _ok, "cache": _ok}, timeout_sec=1.0)
        self.assertEqual(result.status, "ready")
        self.assertEqual(set(result.checks), {"database", "cache"})
        self.assertTrue(all(c.status == "healthy" for c in result.checks.values()))

    async def test_hanging_check_times_out(self) -> None:
        start = time.perf_counter()
        result = await readiness({"database": _hangs}, timeout_sec=0.05)
        self.assertLess(time.perf_counter() - start, 2.0)
        self.assertEqual(result.status, "not_ready")
        check = result.checks["database"]
        self.assertEqual(check.status, "unhealthy")
        self.assertIn("timed out", check.error)
        self.assertIn("50ms", check.error)

    async def test_one_failure_makes_service_not_ready(self) -> None:
        result = await readiness({"database": _fails, "other": _ok}, timeout_sec=1.0)
        self.assertEqual(result.status, "not_ready")
        self.assertEqual(result.checks["other"].status, "healthy")
        error = result.checks["database"].error
        self.assertEqual(error, "database check failed: ConnectionError")
        self.assertNotIn("10.0.0.5", error)

    async def test_checks_run_concurrently(self) -> None:
        async def slow() -> None:
            await asyncio.sleep(0.2)

        start = time.perf_counter()
        await readiness({"a": slow, "b": slow, "c": slow}, timeout_sec=1.0)
        self.assertLess(time.perf_counter() - start, 0.5)

    async def test_database_check_against_sqlite(self) -> None:
        result = await run_check("database", database_check(make_session_factory()), 2.0)
        self.assertEqual(result.status, "healthy")
        self.assertIsNone(result.error)


class TestDatabaseEngine(unittest.TestCase):
    def test_postgres_urls_use_the_installed_psycopg2_driver(self) -> None:
        self.assertEqual(engine.dialect.name, "postgresql")
        self.assertEqual(engine.dialect.driver, "psycopg2")


if __name__ == "__main__":
    unittest.main()
