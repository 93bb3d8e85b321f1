import unittest
from unittest import mock

import users as users_module
from errors import Conflict, InvalidArgument, NotFound, Unauthenticated
from tests.helpers import ServiceCase


class UserDirectoryTests(ServiceCase, unittest.TestCase):
    def test_signup_normalises_and_hashes(self):
        user = self.users.signup(" Dana ", "DANA@Example.com", "long password")
        self.assertEqual(user["username"], "dana")
        self.assertEqual(user["email"], "dana@example.com")
        self.assertRegex(user["handle"], r"^[a-z0-9]{8}$")
        self.assertNotEqual(user["password_hash"], "long password")
        self.assertEqual(self.users.authenticate("dana", "long password")["id"], user["id"])

    def test_signup_validation(self):
        for username, email, password in (
            ("ab", "a@b.co", "password1"),
            ("has space", "a@b.co", "password1"),
            ("fine", "not-an-email", "password1"),
            ("fine", "a@b.co", "short"),
        ):
            with self.assertRaises(InvalidArgument):
                self.users.signup(username, email, password)

    def test_non_text_fields_are_invalid(self):
        for username, email, password, reason in (
            (12345, "a@b.co", "password1", "invalid_username"),
            ("fine", ["a@b.co"], "password1", "invalid_email"),
            ("fine", "a@b.co", 123456789, "invalid_password"),
        ):
            with self.assertRaises(InvalidArgument) as ctx:
                self.users.signup(username, email, password)
            self.assertEqual(ctx.exception.reason, reason)
        self.users.signup("dana", "dana@example.com", "password1")
        with self.assertRaises(InvalidArgument):
            self.users.authenticate("dana", {"password": "password1"})
        with self.assertRaises(InvalidArgument):
            self.users.authenticate(7, "password1")

    def test_duplicate_username_and_email(self):
        self.users.signup("dana", "dana@example.com", "password1")
        with self.assertRaises(Conflict) as ctx:
            self.users.signup("dana", "other@example.com", "password1")
        self.assertEqual(ctx.exception.reason, "username_taken")
        with self.assertRaises(Conflict) as ctx:
            self.users.signup("other", "dana@example.com", "password1")
        self.assertEqual(ctx.exception.reason, "email_taken")

    def test_handle_collision_is_retried(self):
        taken = self.make_user("taken")
        handles = iter([taken.handle, "fresh001"])
        with mock.patch.object(users_module, "new_handle", lambda: next(handles)):
            user = self.users.signup("newbie", "newbie@example.com", "password1")
        self.assertEqual(user["handle"], "fresh001")

    def test_authenticate_failures_share_a_reason(self):
        self.users.signup("dana", "dana@example.com", "password1")
        for username, password in (("dana", "wrong-one"), ("ghost", "password1")):
            with self.assertRaises(Unauthenticated) as ctx:
                self.users.authenticate(username, password)
            self.assertEqual(ctx.exception.reason, "invalid_credentials")

    def test_profile_update_whitelist(self):
        me = self.make_user("erin")
        profile = self.users.update_profile(me, {"bio": "hello", "name_color": "#00ff00"})
        self.assertEqual(profile["bio"], "hello")
        self.assertNotIn("email", self.users.get_profile("erin"))
        with self.assertRaises(InvalidArgument):
            self.users.update_profile(me, {"username": "root"})
        with self.assertRaises(InvalidArgument):
            self.users.update_profile(me, {"name_color": "green"})
        with self.assertRaises(NotFound):
            self.users.get_profile("nobody")


if __name__ == "__main__":
    unittest.main()
