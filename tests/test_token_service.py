"""Unit tests for auth/tokens.py -- TokenService issue / verify / rotate.

Covers:
- refresh-token history never exceeds 10 entries; the 11th issuance evicts the 1st
- verify_access accepts only unexpired tokens signed with the access secret
- rotate distinguishes invalid from expired tokens
- rotate rejects a correctly signed token that was evicted from history
- rotate leaves the presented token in history
- issue raises ServerError when the user row is gone
- concurrent issue calls for one user leave exactly the newest 10 entries
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from jose import jwt
from sqlalchemy import select

from auth.errors import (
    AccountSuspendedError,
    InvalidTokenError,
    RefreshTokenNotFoundError,
    ServerError,
    TokenExpiredError,
)
from auth.models import User
from auth.store import REFRESH_TOKEN_HISTORY_LIMIT, UserStore, _refresh_tokens, create_db_engine
from auth.tokens import BEARER_PREFIX, TokenService
from core.config import get_settings


def _flip_signature(token: str) -> str:
    """Change one character in the middle of the signature segment."""
    header, payload, signature = token.split(".")
    i = len(signature) // 2
    replacement = "A" if signature[i] != "A" else "B"
    return ".".join([header, payload, signature[:i] + replacement + signature[i + 1 :]])


def _service_with(stores, **overrides) -> TokenService:
    return TokenService(stores.users, get_settings().model_copy(update=overrides))


class TestIssue:
    def test_access_claims(self, stores, token_service):
        role_id = stores.roles.create_role("support", stores.permission_ids("user_view"))
        user = stores.create_user("a@b.com", role_id=role_id)
        pair = token_service.issue(user)

        claims = token_service.verify_access(pair.access_token)
        assert claims["user_id"] == user.id
        assert claims["email"] == "a@b.com"
        assert claims["role"] == role_id
        assert claims["type"] == get_settings().default_user_type

    def test_access_role_claim_is_null_without_role(self, stores, token_service):
        user = stores.create_user("norole@b.com")
        claims = token_service.verify_access(token_service.issue(user).access_token)
        assert claims["role"] is None

    def test_refresh_claims_carry_only_identity(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)
        claims = jwt.get_unverified_claims(pair.refresh_token)
        assert claims["user_id"] == user.id
        assert "email" not in claims
        assert "role" not in claims

    def test_refresh_token_recorded_with_bearer_prefix(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)
        assert stores.users.get_refresh_tokens(user.id) == [BEARER_PREFIX + pair.refresh_token]

    def test_history_is_capped(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pairs = [token_service.issue(user) for _ in range(REFRESH_TOKEN_HISTORY_LIMIT + 1)]

        history = stores.users.get_refresh_tokens(user.id)
        assert len(history) == REFRESH_TOKEN_HISTORY_LIMIT
        assert BEARER_PREFIX + pairs[0].refresh_token not in history
        assert history == [BEARER_PREFIX + p.refresh_token for p in pairs[1:]]

    def test_pairs_issued_back_to_back_are_distinct(self, stores, token_service):
        user = stores.create_user("a@b.com")
        first = token_service.issue(user)
        second = token_service.issue(user)
        assert first.refresh_token != second.refresh_token

    def test_missing_user_raises_server_error(self, stores, token_service):
        ghost = User(id=9999, email="ghost@b.com", type="CUSTOMER")
        with pytest.raises(ServerError):
            token_service.issue(ghost)
        assert stores.users.get_refresh_tokens(9999) == []


class TestVerifyAccess:
    def test_flipped_signature_rejected(self, stores, token_service):
        user = stores.create_user("a@b.com")
        token = token_service.issue(user).access_token
        with pytest.raises(InvalidTokenError):
            token_service.verify_access(_flip_signature(token))

    def test_expired_token_rejected(self, stores):
        service = _service_with(stores, access_token_expire_seconds=-10)
        user = stores.create_user("a@b.com")
        with pytest.raises(TokenExpiredError):
            service.verify_access(service.issue(user).access_token)

    def test_refresh_token_is_not_an_access_token(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)
        with pytest.raises(InvalidTokenError):
            token_service.verify_access(pair.refresh_token)

    def test_garbage_rejected(self, token_service):
        with pytest.raises(InvalidTokenError):
            token_service.verify_access("not-a-jwt")


class TestRotate:
    def test_rotate_returns_new_pair_and_appends(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)

        rotated_user, new_pair = token_service.rotate(pair.refresh_token)
        assert rotated_user.id == user.id
        assert new_pair.refresh_token != pair.refresh_token
        history = stores.users.get_refresh_tokens(user.id)
        assert history[-1] == BEARER_PREFIX + new_pair.refresh_token

    def test_presented_token_stays_usable(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)
        token_service.rotate(pair.refresh_token)
        # Not removed by rotation: still in history, still accepted.
        assert BEARER_PREFIX + pair.refresh_token in stores.users.get_refresh_tokens(user.id)
        token_service.rotate(pair.refresh_token)

    def test_bearer_prefixed_token_accepted(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)
        rotated_user, _ = token_service.rotate(BEARER_PREFIX + pair.refresh_token)
        assert rotated_user.id == user.id

    def test_evicted_token_rejected(self, stores, token_service):
        user = stores.create_user("a@b.com")
        first = token_service.issue(user)
        for _ in range(REFRESH_TOKEN_HISTORY_LIMIT):
            token_service.issue(user)

        # Signature and expiry still fine -- only the history says no.
        token_service.verify_refresh(first.refresh_token)
        with pytest.raises(RefreshTokenNotFoundError):
            token_service.rotate(first.refresh_token)

    def test_invalid_signature(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)
        with pytest.raises(InvalidTokenError):
            token_service.rotate(_flip_signature(pair.refresh_token))

    def test_expired_is_distinguished_from_invalid(self, stores):
        service = _service_with(stores, refresh_token_expire_seconds=-10)
        user = stores.create_user("a@b.com")
        pair = service.issue(user)
        with pytest.raises(TokenExpiredError) as excinfo:
            service.rotate(pair.refresh_token)
        assert excinfo.value.error_code == "token_expired"

    def test_access_token_cannot_be_rotated(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)
        with pytest.raises(InvalidTokenError):
            token_service.rotate(pair.access_token)

    def test_suspended_user_cannot_rotate(self, stores, token_service):
        user = stores.create_user("a@b.com")
        pair = token_service.issue(user)
        stores.users.update_user(user.id, suspended=True)
        with pytest.raises(AccountSuspendedError):
            token_service.rotate(pair.refresh_token)

    def test_token_of_other_user_not_found(self, stores, token_service):
        alice = stores.create_user("alice@b.com")
        bob = stores.create_user("bob@b.com")
        token_service.issue(alice)
        forged_for_bob = jwt.encode(
            {"user_id": bob.id, "jti": "x", "exp": 4102444800},
            get_settings().refresh_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(RefreshTokenNotFoundError):
            token_service.rotate(forged_for_bob)


class TestConcurrentIssue:
    def test_parallel_issue_keeps_newest_ten(self, tmp_path):
        # File-backed so every worker thread gets its own connection and
        # SQLite's write lock is actually contended.
        engine = create_db_engine(f"sqlite:///{tmp_path / 'auth.db'}")
        users = UserStore(engine)
        user = User(email="busy@b.com", type="CUSTOMER", hashed_password="x")
        user.id = users.create_user(user)
        service = TokenService(users, get_settings())

        issued = 40
        with ThreadPoolExecutor(max_workers=8) as pool:
            pairs = list(pool.map(lambda _: service.issue(user), range(issued)))

        history = users.get_refresh_tokens(user.id)
        assert len(history) == REFRESH_TOKEN_HISTORY_LIMIT
        assert len(set(history)) == REFRESH_TOKEN_HISTORY_LIMIT
        assert set(history) <= {BEARER_PREFIX + p.refresh_token for p in pairs}

        # Surviving rows are the last ten inserted, with no gaps.
        with engine.connect() as conn:
            ids = sorted(r.id for r in conn.execute(select(_refresh_tokens.c.id)))
        assert ids == list(range(issued - REFRESH_TOKEN_HISTORY_LIMIT + 1, issued + 1))
        engine.dispose()
