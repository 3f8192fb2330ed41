"""Tests for app.services.admin_guard: last-admin invariant, self-deletion and row locking."""

import threading
import unittest
import uuid
from datetime import timedelta

from factories import T0, make_session_factory, make_subscription, make_user
from sqlalchemy import inspect, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from app.core.database import engine
from app.models import Subscription, User, UserRole
from app.services.admin_guard import (
    LastAdminViolation,
    SelfDeletionDenied,
    UserNotFound,
    admin_lock_statement,
    change_role,
    delete_user,
    user_stats,
)


class AdminGuardTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.Session = make_session_factory()
        self.db = self.Session()
        self.admin = make_user(self.db, "admin@holidayheroes.com.au", UserRole.ADMIN)
        self.member = make_user(self.db, "member@holidayheroes.com.au")

    def tearDown(self) -> None:
        self.db.close()

    def admin_count(self) -> int:
        self.db.expire_all()
        return self.db.query(User).filter(User.role == UserRole.ADMIN).count()


class TestChangeRole(AdminGuardTestCase):
    def test_promote_and_demote_with_two_admins(self) -> None:
        change_role(self.db, self.admin.id, self.member.id, UserRole.ADMIN)
        self.assertEqual(self.admin_count(), 2)
        change_role(self.db, self.member.id, self.admin.id, UserRole.USER)
        self.assertEqual(self.admin_count(), 1)

    def test_demoting_last_admin_is_refused(self) -> None:
        with self.assertRaises(LastAdminViolation):
            change_role(self.db, self.admin.id, self.admin.id, UserRole.USER)
        self.assertEqual(self.admin_count(), 1)
        self.assertEqual(self.db.get(User, self.admin.id).role, UserRole.ADMIN)

    def test_setting_admin_to_admin_is_allowed(self) -> None:
        user = change_role(self.db, self.admin.id, self.admin.id, UserRole.ADMIN)
        self.assertEqual(user.role, UserRole.ADMIN)

    def test_unknown_target(self) -> None:
        with self.assertRaises(UserNotFound):
            change_role(self.db, self.admin.id, 9999, UserRole.USER)


class TestDeleteUser(AdminGuardTestCase):
    def test_self_deletion_is_refused_even_with_other_admins(self) -> None:
        change_role(self.db, self.admin.id, self.member.id, UserRole.ADMIN)
        with self.assertRaises(SelfDeletionDenied):
            delete_user(self.db, self.admin.id, self.admin.id)
        self.assertIsNotNone(self.db.get(User, self.admin.id))

    def test_deleting_last_admin_is_refused(self) -> None:
        # The actor's own role is checked by the router, not here.
        with self.assertRaises(LastAdminViolation):
            delete_user(self.db, self.member.id, self.admin.id)
        self.assertEqual(self.admin_count(), 1)

    def test_delete_regular_user_keeps_subscription_history(self) -> None:
        sub = make_subscription(self.db, self.member)
        delete_user(self.db, self.admin.id, self.member.id)
        self.db.expire_all()
        self.assertIsNone(self.db.get(User, self.member.id))
        kept = self.db.get(Subscription, sub.id)
        self.assertIsNotNone(kept)
        self.assertIsNone(kept.user_id)

    def test_unknown_target(self) -> None:
        with self.assertRaises(UserNotFound):
            delete_user(self.db, self.admin.id, 9999)


class TestAdminLockStatement(unittest.TestCase):
    def test_locks_admin_rows_in_id_order_on_postgres(self) -> None:
        sql = str(admin_lock_statement().compile(dialect=postgresql.dialect()))
        self.assertIn("WHERE users.role = ", sql)
        self.assertIn("ORDER BY users.id", sql)
        self.assertTrue(sql.rstrip().endswith("FOR UPDATE"), sql)


class TestConcurrentDemotionIntegration(unittest.TestCase):
    """Two admins demoting each other at once on PostgreSQL leave exactly one ADMIN."""

    def setUp(self) -> None:
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as e:
            self.skipTest(f"Database not running: {e}")
        if not inspect(engine).has_table("users"):
            self.skipTest("Database schema not migrated")
        self.Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
        db = self.Session()
        try:
            if db.query(User).filter(User.role == UserRole.ADMIN).count():
                self.skipTest("Database already has admins")
            suffix = uuid.uuid4().hex[:8]
            self.first = make_user(db, f"first-{suffix}@holidayheroes.com.au", UserRole.ADMIN)
            self.second = make_user(db, f"second-{suffix}@holidayheroes.com.au", UserRole.ADMIN)
            self.ids = [self.first.id, self.second.id]
        finally:
            db.close()

    def tearDown(self) -> None:
        db = self.Session()
        try:
            db.query(User).filter(User.id.in_(self.ids)).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()

    def test_at_least_one_admin_survives(self) -> None:
        errors: list[Exception] = []
        barrier = threading.Barrier(2)

        def demote(actor: int, target: int) -> None:
            session = self.Session()
            try:
                barrier.wait()
                change_role(session, actor, target, UserRole.USER)
            except LastAdminViolation as e:
                errors.append(e)
            finally:
                session.close()

        a, b = self.ids
        threads = [threading.Thread(target=demote, args=(a, b)), threading.Thread(target=demote, args=(b, a))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        db = self.Session()
        try:
            roles = [
                UserRole(u.role) for u in db.query(User).filter(User.id.in_(self.ids)).all()
            ]
        finally:
            db.close()
        self.assertEqual(roles.count(UserRole.ADMIN), 1)
        self.assertEqual(len(errors), 1)


class TestUserStats(AdminGuardTestCase):
    def test_counts(self) -> None:
        make_user(self.db, "verified@holidayheroes.com.au", email_verified_at=T0)
        stats = user_stats(self.db, now=T0 + timedelta(days=365 * 50))
        self.assertEqual(stats["total_users"], 3)
        self.assertEqual(stats["admin_users"], 1)
        self.assertEqual(stats["verified_users"], 1)
        self.assertEqual(stats["recent_users"], 0)


if __name__ == "__main__":
    unittest.main()
