"""
auth/tokens.py -- JWT issuance/rotation and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets and carry two different validity windows, both from
       core.config.get_settings(). A refresh token can therefore never pass
       verify_access() and an access token can never be rotated.

  Refresh-token history: every issued refresh token is stored as the literal
       string "Bearer <token>" in the identity's bounded history (last 10).
       rotate() only accepts a token still present in that history, so a token
       pushed out by ten newer issuances is dead even while its signature and
       expiry are still valid. Rotation does not remove the presented token; it
       stays usable until it is evicted.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email exists [C1].

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import (
    AccountSuspendedError,
    InvalidTokenError,
    RefreshTokenNotFoundError,
    ServerError,
    TokenExpiredError,
)
from auth.models import TokenPair
from core.config import Settings, get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("rolegate.auth")

_ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; the API layer caps password
    length at 72 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first signin attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("rolegate_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the email exists. Returns the User on a
    password match -- suspended accounts included, the caller decides what a
    suspended match means -- and None otherwise.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues, verifies and rotates access/refresh token pairs.

    Usage:
        tokens = TokenService(user_store)
        pair = tokens.issue(user)
        claims = tokens.verify_access(pair.access_token)
        user, new_pair = tokens.rotate(pair.refresh_token)
    """

    def __init__(self, user_store: UserStore, settings: Settings | None = None) -> None:
        self.user_store = user_store
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, user: User) -> TokenPair:
        """Sign a new access/refresh pair and record the refresh token.

        Raises ServerError if the user row is gone by the time the refresh
        token is appended to its history.
        """
        now = datetime.now(timezone.utc)
        access_claims = {
            "sub": str(user.id),
            "user_id": user.id,
            "email": user.email,
            "role": user.role_id,
            "type": user.type,
            "iat": now,
            "exp": now + timedelta(seconds=self.settings.access_token_expire_seconds),
        }
        refresh_claims = {
            "user_id": user.id,
            # jti keeps two pairs issued within the same second distinct.
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + timedelta(seconds=self.settings.refresh_token_expire_seconds),
        }
        access_token = jwt.encode(access_claims, self.settings.access_token_secret, algorithm=_ALGORITHM)
        refresh_token = jwt.encode(refresh_claims, self.settings.refresh_token_secret, algorithm=_ALGORITHM)

        if not self.user_store.append_refresh_token(user.id, BEARER_PREFIX + refresh_token):
            logger.error("Token issuance failed: user %s disappeared before history append", user.id)
            raise ServerError("Error generating tokens.")
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> dict:
        """Decode an access token. Raises TokenExpiredError or InvalidTokenError."""
        claims = self._decode(token, self.settings.access_token_secret)
        if "user_id" not in claims or "type" not in claims:
            raise InvalidTokenError()
        return claims

    def verify_refresh(self, token: str) -> dict:
        """Decode a refresh token (bare, without the Bearer prefix)."""
        claims = self._decode(token, self.settings.refresh_token_secret)
        if "user_id" not in claims:
            raise InvalidTokenError("Invalid refresh token.")
        return claims

    @staticmethod
    def _decode(token: str, secret: str) -> dict:
        try:
            return jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc

    # ------------------------------------------------------------------
    # Rotate
    # ------------------------------------------------------------------

    def rotate(self, presented: str) -> tuple[User, TokenPair]:
        """Exchange a refresh token for a new pair.

        presented may carry the "Bearer " prefix or not. Signature and expiry
        are checked first; then the token must still be in the identity's
        stored history.
        """
        bare = presented[len(BEARER_PREFIX) :] if presented.startswith(BEARER_PREFIX) else presented
        try:
            claims = self.verify_refresh(bare)
        except TokenExpiredError as exc:
            raise TokenExpiredError("Refresh token has expired.") from exc
        except InvalidTokenError as exc:
            raise InvalidTokenError("Invalid refresh token.") from exc

        user = self.user_store.get_by_refresh_token(claims["user_id"], BEARER_PREFIX + bare)
        if user is None:
            raise RefreshTokenNotFoundError()
        if user.suspended:
            raise AccountSuspendedError()
        return user, self.issue(user)
