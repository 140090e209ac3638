"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore, RoleStore and PermissionStore are the repositories; the _row_to_*
functions are the mappers. Route and dependency code never touches SQL directly.

All three stores share one Engine (one connection pool, one database) built by
create_db_engine(). The app lifespan owns the engine and disposes it on shutdown.

Security:
  All queries use bound parameters. No f-strings in SQL.

Refresh-token history:
  Stored one row per token in refresh_tokens, ordered by id. The history is
  capped at REFRESH_TOKEN_HISTORY_LIMIT per user. append_refresh_token() does
  the append and the trim inside one transaction that first touches the user
  row, so two concurrent issuances for the same user serialize on that row
  instead of trimming each other's freshly inserted token.

Referential integrity (role still assigned to users) is checked by the route
layer via UserStore.count_by_role(), not by the schema.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Permission, Role, User

REFRESH_TOKEN_HISTORY_LIMIT = 10

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercased
    Column("name", String(255)),
    Column("hashed_password", Text, nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id")),
    Column("type", String(50), nullable=False),
    Column("suspended", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("token", Text, nullable=False),  # literal "Bearer <jwt>"
    Column("created_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("label", String(100), nullable=False, server_default=""),
    Column("module", String(50), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id"), nullable=False),
    PrimaryKeyConstraint("role_id", "permission_id"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the token-history writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Build the shared Engine and create any missing tables."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their refresh-token history.

    Usage:
        engine = create_db_engine("sqlite:///auth.db")
        store = UserStore(engine)
        uid = store.create_user(User(email="a@b.com", type="CUSTOMER", hashed_password=...))
        store.append_refresh_token(uid, "Bearer eyJ...")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    name=user.name,
                    hashed_password=user.hashed_password,
                    role_id=user.role_id,
                    type=user.type,
                    suspended=1 if user.suspended else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. The password hash is not loaded."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive), including the password hash.

        Only the signin path should call this.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row, with_password=True) if row is not None else None

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.email == email.strip().lower())
            ).scalar()
        return (count or 0) > 0

    def get_first_by_type(self, user_type: str) -> User | None:
        """Return the oldest user of the given type. Used by the admin seeder."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(_users.c.type == user_type).order_by(_users.c.id).limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, role_id, suspended.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - {"name", "role_id", "suspended"}
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "suspended" in fields:
            fields["suspended"] = 1 if fields["suspended"] else 0
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    def count_by_role(self, role_id: int) -> int:
        """Number of users currently referencing role_id."""
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_users).where(_users.c.role_id == role_id)).scalar()
        return count or 0

    # ------------------------------------------------------------------
    # Refresh-token history
    # ------------------------------------------------------------------

    def append_refresh_token(self, user_id: int, token: str) -> bool:
        """Append token to the user's history and keep only the newest entries.

        Returns False (and writes nothing) if the user does not exist.

        The UPDATE on the user row runs first so that it takes the row lock
        (or SQLite's write lock) before the insert; concurrent appends for the
        same user are therefore applied one after the other, each trimming to
        REFRESH_TOKEN_HISTORY_LIMIT.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            touched = conn.execute(_users.update().where(_users.c.id == user_id).values(updated_at=now))
            if touched.rowcount == 0:
                return False
            conn.execute(_refresh_tokens.insert().values(user_id=user_id, token=token, created_at=now))
            oldest_kept = conn.execute(
                select(_refresh_tokens.c.id)
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.id.desc())
                .offset(REFRESH_TOKEN_HISTORY_LIMIT - 1)
                .limit(1)
            ).scalar()
            if oldest_kept is not None:
                conn.execute(
                    delete(_refresh_tokens).where(
                        (_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.id < oldest_kept)
                    )
                )
        return True

    def get_by_refresh_token(self, user_id: int, token: str) -> User | None:
        """Return the user only if token is still present in their history."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.id == user_id)
                    & _users.c.id.in_(
                        select(_refresh_tokens.c.user_id).where(
                            (_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.token == token)
                        )
                    )
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_refresh_tokens(self, user_id: int) -> list[str]:
        """Return the user's stored history, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_refresh_tokens.c.token)
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.id)
            ).fetchall()
        return [r.token for r in rows]


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleStore:
    """Repository for Role records and their permission membership."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_role(self, name: str, permission_ids: list[int]) -> int:
        """Insert a role with its permission set in one transaction.

        Raises ValueError on an empty permission set -- nothing is written.
        Raises sqlalchemy.exc.IntegrityError if the name already exists.
        """
        if not permission_ids:
            raise ValueError("A role must have at least one permission.")
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_roles.insert().values(name=name, created_at=now, updated_at=now))
            role_id = result.inserted_primary_key[0]
            conn.execute(
                _role_permissions.insert(),
                [{"role_id": role_id, "permission_id": pid} for pid in sorted(set(permission_ids))],
            )
        return role_id

    def get_role(self, role_id: int) -> Role | None:
        """Look up a role with its permissions fully expanded."""
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
            if row is None:
                return None
            perms = self._permissions_for(conn, [role_id])
        return _row_to_role(row, perms.get(role_id, []))

    def get_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
            if row is None:
                return None
            perms = self._permissions_for(conn, [row.id])
        return _row_to_role(row, perms.get(row.id, []))

    def list_roles(self) -> list[Role]:
        """Return all roles ordered by name, permissions expanded."""
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
            perms = self._permissions_for(conn, [r.id for r in rows])
        return [_row_to_role(r, perms.get(r.id, [])) for r in rows]

    def update_role(self, role_id: int, name: str | None = None, permission_ids: list[int] | None = None) -> bool:
        """Rename a role and/or replace its permission set.

        An explicitly empty permission_ids list is rejected with ValueError.
        Returns False if role_id was not found.
        Raises sqlalchemy.exc.IntegrityError if the new name is taken.
        """
        if permission_ids is not None and not permission_ids:
            raise ValueError("A role must have at least one permission.")
        values: dict = {"updated_at": _now_iso()}
        if name is not None:
            values["name"] = name
        with self.engine.begin() as conn:
            result = conn.execute(_roles.update().where(_roles.c.id == role_id).values(**values))
            if result.rowcount == 0:
                return False
            if permission_ids is not None:
                conn.execute(delete(_role_permissions).where(_role_permissions.c.role_id == role_id))
                conn.execute(
                    _role_permissions.insert(),
                    [{"role_id": role_id, "permission_id": pid} for pid in sorted(set(permission_ids))],
                )
        return True

    def delete_role(self, role_id: int) -> bool:
        """Delete a role and its membership rows. Callers check user references first."""
        with self.engine.begin() as conn:
            conn.execute(delete(_role_permissions).where(_role_permissions.c.role_id == role_id))
            result = conn.execute(delete(_roles).where(_roles.c.id == role_id))
        return result.rowcount > 0

    @staticmethod
    def _permissions_for(conn, role_ids: list[int]) -> dict[int, list[Permission]]:
        if not role_ids:
            return {}
        rows = conn.execute(
            select(_role_permissions.c.role_id, _permissions)
            .select_from(_role_permissions.join(_permissions, _permissions.c.id == _role_permissions.c.permission_id))
            .where(_role_permissions.c.role_id.in_(role_ids))
            .order_by(_permissions.c.name)
        ).fetchall()
        grouped: dict[int, list[Permission]] = {}
        for r in rows:
            grouped.setdefault(r.role_id, []).append(_row_to_permission(r))
        return grouped


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class PermissionStore:
    """Repository for the permission catalog. Read-mostly."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_permission(self, permission: Permission) -> int:
        """Insert a permission. Raises IntegrityError if the name exists."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _permissions.insert().values(
                    name=permission.name,
                    label=permission.label,
                    module=permission.module,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def insert_missing(self, catalog: list[Permission]) -> int:
        """Insert every catalog entry whose name is not present yet. Returns the count inserted."""
        existing = {p.name for p in self.list_permissions()}
        inserted = 0
        for permission in catalog:
            if permission.name in existing:
                continue
            self.create_permission(permission)
            existing.add(permission.name)
            inserted += 1
        return inserted

    def get_by_name(self, name: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.name == name)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        """Return the full catalog ordered by module, then name."""
        with self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().order_by(_permissions.c.module, _permissions.c.name)).fetchall()
        return [_row_to_permission(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, with_password: bool = False) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password if with_password else None,
        role_id=row.role_id,
        type=row.type,
        suspended=bool(row.suspended),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row, permissions: list[Permission]) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        permissions=permissions,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        label=row.label,
        module=row.module,
        created_at=row.created_at,
    )
