from __future__ import annotations

import unittest
from datetime import timedelta
from unittest.mock import patch

from fastapi.testclient import TestClient

from hrflow.db import get_db
from hrflow.errors import ApiError
from hrflow.main import app
from hrflow.security import create_identity_token, verify_identity_token
from hrflow.settings import Settings
from tests.support import make_session_factory, override_get_db

TEST_SETTINGS = Settings(jwt_secret="test-secret")


class IdentityTokenTests(unittest.TestCase):
    def setUp(self) -> None:
        settings_patch = patch("hrflow.security.get_settings", return_value=TEST_SETTINGS)
        settings_patch.start()
        self.addCleanup(settings_patch.stop)

    def test_token_round_trip_returns_subject(self) -> None:
        token = create_identity_token(sub="uid-42", email="a@example.com")
        payload = verify_identity_token(token)
        self.assertEqual(payload["sub"], "uid-42")
        self.assertEqual(payload["aud"], "hrflow")

    def test_expired_token_is_rejected(self) -> None:
        token = create_identity_token(sub="uid-42", expires_delta=timedelta(seconds=-5))
        with self.assertRaises(ApiError) as ctx:
            verify_identity_token(token)
        self.assertEqual(ctx.exception.status_code, 401)

    def test_token_for_another_audience_is_rejected(self) -> None:
        with patch("hrflow.security.get_settings", return_value=Settings(jwt_secret="test-secret", jwt_audience="other")):
            token = create_identity_token(sub="uid-42")
        with self.assertRaises(ApiError):
            verify_identity_token(token)

    def test_unconfigured_secret_rejects_everything(self) -> None:
        token = create_identity_token(sub="uid-42")
        with patch("hrflow.security.get_settings", return_value=Settings(jwt_secret="")):
            with self.assertRaises(ApiError) as ctx:
                verify_identity_token(token)
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")


class BearerEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        settings_patch = patch("hrflow.security.get_settings", return_value=TEST_SETTINGS)
        settings_patch.start()
        self.addCleanup(settings_patch.stop)
        app.dependency_overrides[get_db] = override_get_db(make_session_factory())
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_valid_bearer_token_reaches_handler(self) -> None:
        token = create_identity_token(sub="uid-42")
        response = self.client.post(
            "/api/push/unsubscribe",
            json={"endpoint": "https://push.test/1"},
            headers={"Authorization": f"Bearer {token}"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": False})

    def test_garbage_token_is_unauthorized(self) -> None:
        response = self.client.post(
            "/api/push/unsubscribe",
            json={"endpoint": "https://push.test/1"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")


if __name__ == "__main__":
    unittest.main()
