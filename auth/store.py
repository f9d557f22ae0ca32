"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. One repository class per entity; the
_row_to_* functions are the mappers. Service code never touches SQL directly.

Transactions:
  Every repository method takes an optional `conn`. Without it the method runs
  in its own short transaction. With it the method joins the caller's unit of
  work -- Database.transaction() is how the onboarding and role services make
  several writes commit or roll back together.

Errors:
  Database.connect() translates SQLAlchemy failures at the boundary:
  IntegrityError -> DuplicateRecord, any other SQLAlchemyError -> StorageError.
  Messages never include bound parameters (emails, hashes).

Backends:
  The backend is chosen only by the database URL. The partial unique index on
  users.email (active rows only) is declared for both SQLite and PostgreSQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or mail/. Import from core/ is allowed.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import (
    OnboardingProcess,
    OnboardingStatus,
    Permission,
    Role,
    RoleWithPermissions,
    User,
    UserSession,
    UserWithRoles,
)
from core.errors import DuplicateRecord, StorageError

logger = logging.getLogger("identityrbac.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

# Email is unique among active principals only.
Index(
    "uq_users_active_email",
    _users.c.email,
    unique=True,
    sqlite_where=_users.c.is_active == 1,
    postgresql_where=_users.c.is_active == 1,
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_by", Integer),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(150), nullable=False, unique=True),  # "<resource>.<action>"
    Column("resource", String(100), nullable=False),
    Column("action", String(50), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("created_by", Integer),
    Column("created_at", String(40), nullable=False),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("role_id", Integer, nullable=False),
    Column("granted_by", Integer),
    Column("created_at", String(40), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_id", Integer, nullable=False, index=True),
    Column("permission_id", Integer, nullable=False),
    Column("granted_by", Integer),
    Column("created_at", String(40), nullable=False),
    UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("jti", String(36), nullable=False, unique=True),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("expires_at", String(40), nullable=False, index=True),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

_onboarding = Table(
    "user_onboarding",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("role_ids", Text, nullable=False),  # JSON list of ints
    Column("status", String(20), nullable=False),
    Column("completed", Integer, nullable=False, server_default="0"),
    Column("created_by", Integer),
    Column("expired_at", String(40), nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new connection.

    WAL lets readers proceed while a writer holds the lock. The busy timeout
    makes a second writer wait instead of failing immediately, so concurrent
    registrations for the same email reach the unique index and the loser
    sees AlreadyRegistered. PRAGMAs are per-connection in SQLite.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    """UTC ISO-8601 with fixed microsecond precision so string order is time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _like(name_filter: str) -> str:
    escaped = name_filter.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and the unit-of-work boundary.

    Usage:
        db = Database("sqlite:///identity_rbac.db")
        with db.transaction() as conn:
            user_id = principals.insert(user, conn=conn)
            assignments.insert_many(user_id, [1, 2], granted_by=7, conn=conn)
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self.create_schema()

    def create_schema(self) -> None:
        """Create any missing tables and indexes. Idempotent."""
        with self.connect() as conn:
            _metadata.create_all(conn)

    @contextmanager
    def connect(self, conn: Connection | None = None) -> Iterator[Connection]:
        """Yield conn if given, otherwise a fresh connection inside its own transaction.

        SQLAlchemy errors are translated to the core error taxonomy here, once,
        for every repository method.
        """
        try:
            if conn is not None:
                yield conn
            else:
                with self.engine.begin() as new_conn:
                    yield new_conn
        except IntegrityError as exc:
            raise DuplicateRecord("a uniqueness constraint rejected the write") from exc
        except SQLAlchemyError as exc:
            logger.error("Storage failure: %s", type(exc).__name__)
            raise StorageError("storage operation failed") from exc

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """One atomic unit. Any exception raised inside rolls every write back."""
        with self.connect() as conn:
            yield conn

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.connect() as conn:
                conn.execute(text("SELECT 1"))
        except StorageError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for User (principal) rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_email(self, email: str, conn: Connection | None = None) -> User | None:
        """Look up an *active* principal by exact email. Returns None if not found."""
        with self._db.connect(conn) as c:
            row = c.execute(
                _users.select().where((_users.c.email == email) & (_users.c.is_active == 1))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int, conn: Connection | None = None) -> User | None:
        with self._db.connect(conn) as c:
            row = c.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def insert(self, user: User, conn: Connection | None = None) -> int:
        """Insert a principal and return its id.

        Raises DuplicateRecord if an active principal already owns the email.
        """
        now = _to_iso(_now())
        with self._db.connect(conn) as c:
            result = c.execute(
                _users.insert().values(
                    email=user.email,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    is_active=1 if user.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def update_password_hash(self, user_id: int, hashed_password: str, conn: Connection | None = None) -> bool:
        with self._db.connect(conn) as c:
            result = c.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=_to_iso(_now()))
            )
        return result.rowcount > 0

    def set_active(self, user_id: int, is_active: bool, conn: Connection | None = None) -> bool:
        with self._db.connect(conn) as c:
            result = c.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_active=1 if is_active else 0, updated_at=_to_iso(_now()))
            )
        return result.rowcount > 0

    def list_with_roles(self, email_filter: str = "", limit: int = 50) -> list[UserWithRoles]:
        """Return principals (newest first) with their assigned roles.

        Two queries rather than one LEFT JOIN so the limit applies to users,
        not to user-role rows.
        """
        query = _users.select().order_by(_users.c.id.desc()).limit(limit)
        if email_filter:
            query = query.where(_users.c.email.like(_like(email_filter), escape="\\"))
        with self._db.connect() as c:
            users = [_row_to_user(r) for r in c.execute(query).fetchall()]
            if not users:
                return []
            role_rows = c.execute(
                select(_user_roles.c.user_id, _roles)
                .join(_roles, _roles.c.id == _user_roles.c.role_id)
                .where(_user_roles.c.user_id.in_([u.id for u in users]))
                .order_by(_roles.c.name)
            ).fetchall()
        by_user: dict[int, list[Role]] = {u.id: [] for u in users}
        for row in role_rows:
            by_user[row.user_id].append(_row_to_role(row))
        return [UserWithRoles(user=u, roles=by_user[u.id]) for u in users]


class RoleStore:
    """Repository for Role rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_id(self, role_id: int, conn: Connection | None = None) -> Role | None:
        with self._db.connect(conn) as c:
            row = c.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def find_by_name(self, name: str, conn: Connection | None = None) -> Role | None:
        with self._db.connect(conn) as c:
            row = c.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list(self, name_filter: str = "", conn: Connection | None = None) -> list[Role]:
        """Return all roles (active and inactive) ordered by name."""
        query = _roles.select().order_by(_roles.c.name)
        if name_filter:
            query = query.where(_roles.c.name.like(_like(name_filter), escape="\\"))
        with self._db.connect(conn) as c:
            rows = c.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def find_active(self, name_filter: str = "", conn: Connection | None = None) -> list[Role]:
        return [r for r in self.list(name_filter, conn=conn) if r.is_active]

    def insert(self, role: Role, conn: Connection | None = None) -> int:
        """Insert a role and return its id. Raises DuplicateRecord on a name clash."""
        now = _to_iso(_now())
        with self._db.connect(conn) as c:
            result = c.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    is_active=1 if role.is_active else 0,
                    created_by=role.created_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def set_active(self, role_id: int, is_active: bool, conn: Connection | None = None) -> bool:
        """Soft-(de)activate a role. Returns False if the role does not exist."""
        with self._db.connect(conn) as c:
            result = c.execute(
                _roles.update()
                .where(_roles.c.id == role_id)
                .values(is_active=1 if is_active else 0, updated_at=_to_iso(_now()))
            )
        return result.rowcount > 0

    def list_with_permissions(self, name_filter: str = "") -> list[RoleWithPermissions]:
        query = (
            select(_roles, _permissions.c.id.label("perm_id"), _permissions.c.name.label("perm_name"),
                   _permissions.c.resource, _permissions.c.action,
                   _permissions.c.description.label("perm_description"),
                   _permissions.c.created_by.label("perm_created_by"),
                   _permissions.c.created_at.label("perm_created_at"))
            .select_from(
                _roles.outerjoin(_role_permissions, _role_permissions.c.role_id == _roles.c.id).outerjoin(
                    _permissions, _permissions.c.id == _role_permissions.c.permission_id
                )
            )
            .order_by(_roles.c.name, _permissions.c.name)
        )
        if name_filter:
            query = query.where(_roles.c.name.like(_like(name_filter), escape="\\"))
        with self._db.connect() as c:
            rows = c.execute(query).fetchall()
        grouped: dict[int, RoleWithPermissions] = {}
        for row in rows:
            entry = grouped.get(row.id)
            if entry is None:
                entry = grouped[row.id] = RoleWithPermissions(role=_row_to_role(row))
            if row.perm_id is not None:
                entry.permissions.append(
                    Permission(
                        id=row.perm_id,
                        name=row.perm_name,
                        resource=row.resource,
                        action=row.action,
                        description=row.perm_description,
                        created_by=row.perm_created_by,
                        created_at=_from_iso(row.perm_created_at),
                    )
                )
        return list(grouped.values())


class PermissionStore:
    """Repository for Permission rows and the role graph traversal."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_id(self, permission_id: int, conn: Connection | None = None) -> Permission | None:
        with self._db.connect(conn) as c:
            row = c.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def search(self, name_filter: str = "", conn: Connection | None = None) -> list[Permission]:
        query = _permissions.select().order_by(_permissions.c.name)
        if name_filter:
            query = query.where(_permissions.c.name.like(_like(name_filter), escape="\\"))
        with self._db.connect(conn) as c:
            rows = c.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def insert(self, permission: Permission, conn: Connection | None = None) -> int:
        """Insert a permission and return its id. Raises DuplicateRecord on a name clash."""
        with self._db.connect(conn) as c:
            result = c.execute(
                _permissions.insert().values(
                    name=permission.name,
                    resource=permission.resource,
                    action=permission.action,
                    description=permission.description,
                    created_by=permission.created_by,
                    created_at=_to_iso(_now()),
                )
            )
            return result.inserted_primary_key[0]

    def resolve_for_user(self, user_id: int, conn: Connection | None = None) -> set[str]:
        """Return the distinct permission names reachable from a principal.

        user_roles -> roles (active only) -> role_permissions -> permissions.
        Permissions granted by several roles collapse to one entry.
        """
        query = (
            select(_permissions.c.name)
            .distinct()
            .select_from(
                _permissions.join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id)
                .join(_roles, _roles.c.id == _role_permissions.c.role_id)
                .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
            )
            .where((_user_roles.c.user_id == user_id) & (_roles.c.is_active == 1))
        )
        with self._db.connect(conn) as c:
            rows = c.execute(query).fetchall()
        return {row.name for row in rows}


class RoleAssignmentStore:
    """Repository for user_roles edges."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert_many(
        self, user_id: int, role_ids: Iterable[int], granted_by: int | None, conn: Connection | None = None
    ) -> None:
        """Insert one edge per role id. Raises DuplicateRecord if an edge already exists."""
        now = _to_iso(_now())
        rows = [{"user_id": user_id, "role_id": rid, "granted_by": granted_by, "created_at": now} for rid in role_ids]
        if not rows:
            return
        with self._db.connect(conn) as c:
            c.execute(_user_roles.insert(), rows)

    def role_ids_for_user(self, user_id: int, conn: Connection | None = None) -> list[int]:
        with self._db.connect(conn) as c:
            rows = c.execute(
                select(_user_roles.c.role_id).where(_user_roles.c.user_id == user_id).order_by(_user_roles.c.role_id)
            ).fetchall()
        return [r.role_id for r in rows]


class RolePermissionStore:
    """Repository for role_permissions edges."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert_many(
        self, role_id: int, permission_ids: Iterable[int], granted_by: int | None, conn: Connection | None = None
    ) -> None:
        """Insert one edge per permission id. Raises DuplicateRecord if an edge already exists."""
        now = _to_iso(_now())
        rows = [
            {"role_id": role_id, "permission_id": pid, "granted_by": granted_by, "created_at": now}
            for pid in permission_ids
        ]
        if not rows:
            return
        with self._db.connect(conn) as c:
            c.execute(_role_permissions.insert(), rows)


class OnboardingStore:
    """Repository for user_onboarding rows, keyed by invitee email."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_email(self, email: str, conn: Connection | None = None) -> OnboardingProcess | None:
        with self._db.connect(conn) as c:
            row = c.execute(_onboarding.select().where(_onboarding.c.email == email)).fetchone()
        return _row_to_onboarding(row) if row is not None else None

    def insert(self, record: OnboardingProcess, conn: Connection | None = None) -> None:
        """Insert a record. Raises DuplicateRecord if one already exists for the email."""
        now = _to_iso(_now())
        with self._db.connect(conn) as c:
            c.execute(
                _onboarding.insert().values(
                    id=record.id,
                    email=record.email,
                    role_ids=json.dumps(list(record.role_ids)),
                    status=OnboardingStatus(record.status).value,
                    completed=1 if record.completed else 0,
                    created_by=record.created_by,
                    expired_at=_to_iso(record.expired_at),
                    created_at=now,
                    updated_at=now,
                )
            )

    def delete_stale(self, record_id: str, now: datetime, conn: Connection | None = None) -> bool:
        """Delete the record with this id only if it can no longer be redeemed.

        Returns False when the row is gone or was replaced by a live
        invitation. The caller treats that as a lost race.
        """
        stale = (
            (_onboarding.c.completed == 1)
            | (_onboarding.c.status != OnboardingStatus.INVITED.value)
            | (_onboarding.c.expired_at <= _to_iso(now))
        )
        with self._db.connect(conn) as c:
            result = c.execute(_onboarding.delete().where((_onboarding.c.id == record_id) & stale))
        return result.rowcount > 0

    def mark_completed(self, email: str, conn: Connection | None = None) -> bool:
        """Move an uncompleted record to COMPLETED.

        Returns False if no uncompleted record exists -- the caller treats that
        as a lost race against a concurrent registration.
        """
        with self._db.connect(conn) as c:
            result = c.execute(
                _onboarding.update()
                .where((_onboarding.c.email == email) & (_onboarding.c.completed == 0))
                .values(
                    completed=1,
                    status=OnboardingStatus.COMPLETED.value,
                    updated_at=_to_iso(_now()),
                )
            )
        return result.rowcount > 0


class SessionStore:
    """Repository for user_sessions rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, session: UserSession, conn: Connection | None = None) -> int:
        now = _to_iso(_now())
        with self._db.connect(conn) as c:
            result = c.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    jti=session.jti,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    expires_at=_to_iso(session.expires_at),
                    is_active=1,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def find_by_jti(self, jti: str, conn: Connection | None = None) -> UserSession | None:
        with self._db.connect(conn) as c:
            row = c.execute(_sessions.select().where(_sessions.c.jti == jti)).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_active_for_user(self, user_id: int, conn: Connection | None = None) -> list[UserSession]:
        with self._db.connect(conn) as c:
            rows = c.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.is_active == 1))
                .order_by(_sessions.c.created_at.desc(), _sessions.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def deactivate(self, jti: str, conn: Connection | None = None) -> bool:
        with self._db.connect(conn) as c:
            result = c.execute(
                _sessions.update()
                .where((_sessions.c.jti == jti) & (_sessions.c.is_active == 1))
                .values(is_active=0, updated_at=_to_iso(_now()))
            )
        return result.rowcount > 0

    def deactivate_all_for_user(self, user_id: int, conn: Connection | None = None) -> int:
        with self._db.connect(conn) as c:
            result = c.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.is_active == 1))
                .values(is_active=0, updated_at=_to_iso(_now()))
            )
        return result.rowcount

    def purge_expired(self, cutoff: datetime, conn: Connection | None = None) -> int:
        """Delete sessions whose expires_at is before cutoff. Returns rows removed."""
        with self._db.connect(conn) as c:
            result = c.execute(_sessions.delete().where(_sessions.c.expires_at < _to_iso(cutoff)))
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=bool(row.is_active),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        is_active=bool(row.is_active),
        created_by=row.created_by,
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        resource=row.resource,
        action=row.action,
        description=row.description,
        created_by=row.created_by,
        created_at=_from_iso(row.created_at),
    )


def _row_to_session(row) -> UserSession:
    return UserSession(
        id=row.id,
        user_id=row.user_id,
        jti=row.jti,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        expires_at=_from_iso(row.expires_at),
        is_active=bool(row.is_active),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_onboarding(row) -> OnboardingProcess:
    return OnboardingProcess(
        id=row.id,
        email=row.email,
        role_ids=[int(r) for r in json.loads(row.role_ids)],
        status=OnboardingStatus(row.status),
        completed=bool(row.completed),
        created_by=row.created_by,
        expired_at=_from_iso(row.expired_at),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )
