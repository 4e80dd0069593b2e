from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient
from jose import jwt

from workforce import security
from workforce.db import get_db
from workforce.errors import Forbidden, InvalidCredentials, TooManyAttempts, Unauthenticated
from workforce.main import app
from workforce.models import AuditEntry, Identity, Role
from workforce.security import (
    HR_ROLES,
    RequestContext,
    authenticate,
    authorize,
    create_access_token,
    decode_session_token,
    ensure_login_attempt_allowed,
    hash_password,
    register_login_failure,
    register_login_success,
    resolve_context,
    verify_password,
)
from tests.db_support import make_employee, make_identity, memory_engine, override_get_db, session_factory


class AuthorizeTests(unittest.TestCase):
    def test_allowed_role_passes(self) -> None:
        context = RequestContext(identity_id=1, role=Role.HR)
        self.assertIs(authorize(context, HR_ROLES), context)

    def test_disallowed_role_is_forbidden(self) -> None:
        with self.assertRaises(Forbidden) as ctx:
            authorize(RequestContext(identity_id=1, role=Role.EMPLOYEE), HR_ROLES)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_missing_context_is_unauthenticated(self) -> None:
        with self.assertRaises(Unauthenticated):
            authorize(None, HR_ROLES)


class SessionTokenTests(unittest.TestCase):
    def test_token_carries_identity_only(self) -> None:
        token, expires_in = create_access_token(42)
        claims = jwt.get_unverified_claims(token)

        self.assertEqual(claims["sub"], "42")
        self.assertNotIn("role", claims)
        self.assertGreater(expires_in, 0)
        self.assertEqual(decode_session_token(token), 42)

    def test_tampered_token_is_rejected(self) -> None:
        header, _payload, signature = create_access_token(42)[0].split(".")
        other_payload = create_access_token(43)[0].split(".")[1]
        with self.assertRaises(Unauthenticated):
            decode_session_token(".".join((header, other_payload, signature)))

    def test_token_signed_with_other_secret_is_rejected(self) -> None:
        forged = jwt.encode({"sub": "1", "typ": "access"}, "another-secret", algorithm="HS256")
        with self.assertRaises(Unauthenticated):
            decode_session_token(forged)


class AuthenticateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.db = session_factory(self.engine)()
        self.identity = make_identity(
            self.db,
            email="login@example.com",
            password_hash=hash_password("correct-horse"),
        )

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_valid_credentials_return_identity_and_stamp_login(self) -> None:
        identity = authenticate(self.db, "  LOGIN@example.com ", "correct-horse")
        self.assertEqual(identity.id, self.identity.id)
        self.assertIsNotNone(identity.last_login_at)

    def test_wrong_password_and_unknown_email_fail_identically(self) -> None:
        with self.assertRaises(InvalidCredentials) as wrong_password:
            authenticate(self.db, "login@example.com", "wrong-password")
        with self.assertRaises(InvalidCredentials) as unknown_email:
            authenticate(self.db, "nobody@example.com", "correct-horse")
        self.assertEqual(wrong_password.exception.message, unknown_email.exception.message)
        self.assertEqual(wrong_password.exception.code, unknown_email.exception.code)

    def test_verify_password_tolerates_garbage_hash(self) -> None:
        self.assertFalse(verify_password("anything", "not-a-bcrypt-hash"))

    def test_resolve_context_reads_role_and_profile_from_store(self) -> None:
        employee = make_employee(self.db, self.identity)
        self.identity.role = Role.SENIOR_MANAGER
        self.db.commit()

        context = resolve_context(self.db, self.identity.id)

        self.assertEqual(context.role, Role.SENIOR_MANAGER)
        self.assertEqual(context.employee_id, employee.id)

    def test_resolve_context_rejects_deleted_identity(self) -> None:
        with self.assertRaises(Unauthenticated):
            resolve_context(self.db, 999_999)


class LoginAttemptLimiterTests(unittest.TestCase):
    def setUp(self) -> None:
        security._FAILED_ATTEMPTS.clear()
        self.addCleanup(security._FAILED_ATTEMPTS.clear)

    def test_failures_block_after_limit(self) -> None:
        for _ in range(security._MAX_ATTEMPTS):
            ensure_login_attempt_allowed("10.0.0.1")
            register_login_failure("10.0.0.1")

        with self.assertRaises(TooManyAttempts) as ctx:
            ensure_login_attempt_allowed("10.0.0.1")
        self.assertEqual(ctx.exception.status_code, 429)
        ensure_login_attempt_allowed("10.0.0.2")

    def test_success_clears_failures(self) -> None:
        for _ in range(security._MAX_ATTEMPTS - 1):
            register_login_failure("10.0.0.1")
        register_login_success("10.0.0.1")
        register_login_failure("10.0.0.1")

        ensure_login_attempt_allowed("10.0.0.1")

    def test_failures_expire_after_window(self) -> None:
        started = datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc)
        with patch("workforce.security._utcnow", return_value=started):
            for _ in range(security._MAX_ATTEMPTS):
                register_login_failure("10.0.0.1")

        later = started + security._ATTEMPT_WINDOW + timedelta(seconds=1)
        with patch("workforce.security._utcnow", return_value=later):
            ensure_login_attempt_allowed("10.0.0.1")
        self.assertNotIn("10.0.0.1", security._FAILED_ATTEMPTS)


class AccessGateEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        security._FAILED_ATTEMPTS.clear()
        self.engine = memory_engine()
        self.factory = session_factory(self.engine)
        app.dependency_overrides[get_db] = override_get_db(self.factory)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.engine.dispose()
        security._FAILED_ATTEMPTS.clear()

    def _bearer(self, identity_id: int) -> dict[str, str]:
        token, _ = create_access_token(identity_id)
        return {"Authorization": f"Bearer {token}"}

    def test_missing_token_is_unauthenticated(self) -> None:
        response = self.client.get("/auth/me")

        self.assertEqual(response.status_code, 401)
        body = response.json()
        self.assertEqual(body["error"]["code"], "UNAUTHENTICATED")
        self.assertIn("X-Request-Id", response.headers)

    def test_login_with_invalid_credentials(self) -> None:
        with self.factory() as db:
            make_identity(db, email="known@example.com", password_hash=hash_password("s3cret-pass"))

        response = self.client.post("/auth/login", json={"email": "known@example.com", "password": "nope-nope"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_CREDENTIALS")

    def test_repeated_failed_logins_are_throttled(self) -> None:
        with self.factory() as db:
            make_identity(db, email="target@example.com", password_hash=hash_password("right-pass-1"))

        for _ in range(security._MAX_ATTEMPTS):
            response = self.client.post("/auth/login", json={"email": "target@example.com", "password": "wrong-pass"})
            self.assertEqual(response.status_code, 401)

        blocked = self.client.post("/auth/login", json={"email": "target@example.com", "password": "right-pass-1"})

        self.assertEqual(blocked.status_code, 429)
        self.assertEqual(blocked.json()["error"]["code"], "TOO_MANY_ATTEMPTS")
        with self.factory() as db:
            actions = [entry.action for entry in db.query(AuditEntry).order_by(AuditEntry.id)]
        self.assertEqual(actions.count("login_failed"), security._MAX_ATTEMPTS)
        self.assertEqual(actions[-1], "login_blocked")

    def test_successful_login_resets_failure_count(self) -> None:
        with self.factory() as db:
            make_identity(db, email="forgetful@example.com", password_hash=hash_password("right-pass-1"))

        for _ in range(security._MAX_ATTEMPTS - 1):
            self.client.post("/auth/login", json={"email": "forgetful@example.com", "password": "wrong-pass"})
        ok = self.client.post("/auth/login", json={"email": "forgetful@example.com", "password": "right-pass-1"})
        self.assertEqual(ok.status_code, 200)

        again = self.client.post("/auth/login", json={"email": "forgetful@example.com", "password": "wrong-pass"})
        self.assertEqual(again.status_code, 401)

    def test_register_then_login_returns_session(self) -> None:
        registered = self.client.post(
            "/auth/register",
            json={"email": "New.User@example.com", "password": "long-enough-1"},
        )
        self.assertEqual(registered.status_code, 201)
        self.assertEqual(registered.json()["identity"]["role"], "employee")
        self.assertEqual(registered.json()["identity"]["email"], "new.user@example.com")

        duplicate = self.client.post(
            "/auth/register",
            json={"email": "new.user@example.com", "password": "long-enough-2"},
        )
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["error"]["code"], "EMAIL_ALREADY_REGISTERED")

        login = self.client.post("/auth/login", json={"email": "new.user@example.com", "password": "long-enough-1"})
        self.assertEqual(login.status_code, 200)
        token = login.json()["access_token"]
        me = self.client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["identity"]["email"], "new.user@example.com")
        self.assertIsNone(me.json()["employee_id"])

    def test_role_change_takes_effect_without_new_token(self) -> None:
        with self.factory() as db:
            identity = make_identity(db, email="promoted@example.com")
        headers = self._bearer(identity.id)

        forbidden = self.client.get("/audit", headers=headers)
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json()["error"]["code"], "FORBIDDEN")

        with self.factory() as db:
            stored = db.get(Identity, identity.id)
            stored.role = Role.ADMIN
            db.commit()

        allowed = self.client.get("/audit", headers=headers)
        self.assertEqual(allowed.status_code, 200)

    def test_demotion_takes_effect_without_new_token(self) -> None:
        with self.factory() as db:
            identity = make_identity(db, email="demoted@example.com", role=Role.HR)
        headers = self._bearer(identity.id)
        self.assertEqual(self.client.get("/leaves/pending", headers=headers).status_code, 200)

        with self.factory() as db:
            stored = db.get(Identity, identity.id)
            stored.role = Role.EMPLOYEE
            db.commit()

        self.assertEqual(self.client.get("/leaves/pending", headers=headers).status_code, 403)

    def test_admin_changes_role_with_audit(self) -> None:
        with self.factory() as db:
            admin = make_identity(db, email="root@example.com", role=Role.ADMIN)
            target = make_identity(db, email="target@example.com")

        response = self.client.patch(
            f"/identities/{target.id}/role",
            json={"role": "hr"},
            headers=self._bearer(admin.id),
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["role"], "hr")

        audit = self.client.get("/audit", params={"resource_type": "identity"}, headers=self._bearer(admin.id))
        entries = [item for item in audit.json() if item["action"] == "change_role"]
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["before"]["role"], "employee")
        self.assertEqual(entries[0]["after"]["role"], "hr")
        self.assertEqual(entries[0]["after"]["password_hash"], "[redacted]")


if __name__ == "__main__":
    unittest.main()
