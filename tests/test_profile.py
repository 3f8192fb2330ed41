"""Tests for app.services.profile and the PII-free user projections."""

import unittest
from datetime import date

from factories import TEST_PII_KEY, make_session_factory, make_user
from pydantic import ValidationError

from app.core.encryption import DecryptionError, PIICodec
from app.models import UserRole
from app.schemas.user import AdminUserItem, ProfileUpdateRequest, UserPublic
from app.services.profile import read_private_profile, update_profile

PII_COLUMNS = ("phone_number_encrypted", "date_of_birth_encrypted", "address_encrypted")
SENSITIVE_KEYS = {"password_hash", "phone_number", "date_of_birth", "address", *PII_COLUMNS}


class ProfileTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.codec = PIICodec(TEST_PII_KEY)
        self.user = make_user(self.db, password_hash="$2b$12$notarealhash")

    def tearDown(self) -> None:
        self.db.close()


class TestUpdateProfile(ProfileTestCase):
    def test_pii_is_stored_encrypted(self) -> None:
        body = ProfileUpdateRequest(
            phone_number="0412 345 678",
            date_of_birth=date(1990, 5, 17),
            address="12 Beach Rd, Byron Bay NSW 2481",
        )
        update_profile(self.db, self.user, body, self.codec)
        self.assertTrue(self.user.phone_number_encrypted.startswith("v1:"))
        self.assertNotIn("0412", self.user.phone_number_encrypted)
        self.assertNotIn("1990", self.user.date_of_birth_encrypted)
        self.assertNotIn("Beach", self.user.address_encrypted)

        private = read_private_profile(self.user, self.codec)
        self.assertEqual(private.phone_number, "0412 345 678")
        self.assertEqual(private.date_of_birth, date(1990, 5, 17))
        self.assertEqual(private.address, "12 Beach Rd, Byron Bay NSW 2481")

    def test_omitted_fields_are_unchanged_and_null_clears(self) -> None:
        update_profile(self.db, self.user, ProfileUpdateRequest(phone_number="0412 345 678"), self.codec)
        stored = self.user.phone_number_encrypted
        update_profile(self.db, self.user, ProfileUpdateRequest(name="Ada"), self.codec)
        self.assertEqual(self.user.phone_number_encrypted, stored)
        self.assertEqual(self.user.name, "Ada")
        update_profile(self.db, self.user, ProfileUpdateRequest(phone_number=None), self.codec)
        self.assertIsNone(self.user.phone_number_encrypted)

    def test_corrupted_column_raises_on_read(self) -> None:
        self.user.address_encrypted = "v1:" + "A" * 60
        with self.assertRaises(DecryptionError):
            read_private_profile(self.user, self.codec)


class TestProfileValidation(unittest.TestCase):
    def test_rejects_unknown_fields(self) -> None:
        with self.assertRaises(ValidationError):
            ProfileUpdateRequest(role="ADMIN")

    def test_rejects_letters_in_phone_number(self) -> None:
        with self.assertRaises(ValidationError):
            ProfileUpdateRequest(phone_number="call me")

    def test_rejects_future_birth_date(self) -> None:
        with self.assertRaises(ValidationError):
            ProfileUpdateRequest(date_of_birth=date(2999, 1, 1))


class TestProjectionsExcludePII(ProfileTestCase):
    """Whatever the viewer's role, the response shapes never carry PII or credentials."""

    def test_no_sensitive_fields_for_any_role(self) -> None:
        update_profile(
            self.db,
            self.user,
            ProfileUpdateRequest(phone_number="0412 345 678", address="12 Beach Rd"),
            self.codec,
        )
        for role in UserRole:
            self.user.role = role
            for schema in (UserPublic, AdminUserItem):
                dumped = schema.model_validate(self.user).model_dump()
                self.assertEqual(SENSITIVE_KEYS & set(dumped), set(), f"{schema.__name__} as {role}")
                self.assertNotIn("v1:", repr(dumped))


if __name__ == "__main__":
    unittest.main()
