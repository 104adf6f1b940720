import unittest

from _support import JWT_SECRET, SYNC_SECRET, make_settings, make_user_token
from jose import jwt
from services.market.errors import SyncAuthorizationError
from services.market.sync_auth import CALLER_SCHEDULER, CALLER_USER, authorize_sync


class AuthorizeSyncTests(unittest.TestCase):
    def setUp(self):
        self.settings = make_settings()

    def test_missing_token_rejected(self):
        for token in (None, ""):
            with self.subTest(token=token):
                with self.assertRaises(SyncAuthorizationError):
                    authorize_sync(token, self.settings)

    def test_sync_secret_identifies_scheduler(self):
        caller = authorize_sync(SYNC_SECRET, self.settings)
        self.assertEqual(caller.kind, CALLER_SCHEDULER)
        self.assertIsNone(caller.subject)

    def test_valid_user_token(self):
        caller = authorize_sync(make_user_token(sub="user-42"), self.settings)
        self.assertEqual(caller.kind, CALLER_USER)
        self.assertEqual(caller.subject, "user-42")

    def test_expired_user_token_rejected(self):
        with self.assertRaises(SyncAuthorizationError):
            authorize_sync(make_user_token(expires_in=-60), self.settings)

    def test_token_signed_with_other_secret_rejected(self):
        with self.assertRaises(SyncAuthorizationError):
            authorize_sync(make_user_token(secret="not-the-secret"), self.settings)

    def test_wrong_audience_rejected(self):
        with self.assertRaises(SyncAuthorizationError):
            authorize_sync(make_user_token(aud="service_role"), self.settings)

    def test_garbage_token_rejected(self):
        with self.assertRaises(SyncAuthorizationError):
            authorize_sync("definitely-not-a-jwt", self.settings)

    def test_token_without_subject_rejected(self):
        token = jwt.encode({"aud": "authenticated"}, JWT_SECRET, algorithm="HS256")
        with self.assertRaises(SyncAuthorizationError):
            authorize_sync(token, self.settings)

    def test_issuer_checked_when_configured(self):
        settings = make_settings(jwt_issuer="https://project.supabase.co/auth/v1")
        with self.assertRaises(SyncAuthorizationError):
            authorize_sync(make_user_token(), settings)

    def test_secret_not_configured_does_not_match_empty(self):
        settings = make_settings(sync_secret=None)
        with self.assertRaises(SyncAuthorizationError):
            authorize_sync(SYNC_SECRET, settings)

    def test_user_tokens_rejected_without_jwt_secret(self):
        settings = make_settings(jwt_secret=None)
        with self.assertRaises(SyncAuthorizationError):
            authorize_sync(make_user_token(), settings)
        # scheduler path still works
        self.assertEqual(authorize_sync(SYNC_SECRET, settings).kind, CALLER_SCHEDULER)


if __name__ == "__main__":
    unittest.main()
