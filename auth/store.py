"""
auth/store.py -- SQLAlchemy Core persistence for users and password reset codes.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_reset_code are the mappers. Route and flow code never
touches SQL directly.

This is the user-management collaborator the identity core consumes: lookup
by email or id (optionally including soft-deleted rows), signup, duplicate
checks, password updates and account withdrawal.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Reset codes are stored as bcrypt hashes, never in clear. Expiry is checked
  on read, so stale rows are harmless and no in-process map is needed.

Layer rule: no imports from api/, web/, core/, or content/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import ResetCode, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("nickname", String(40), nullable=False, unique=True),
    Column("role", String(30), nullable=False, server_default="USER"),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),  # NULL unless withdrawn
)

_reset_codes = Table(
    "password_reset_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("code_hash", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine, with thread sharing and WAL enabled for SQLite URLs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and ResetCode entities.

    Usage:
        store = UserStore("sqlite:///community.db")
        uid = store.create_user(User(email="a@b.c", nickname="ab", hashed_password=hash_password("pw")))
        user = store.get_by_email("a@b.c", include_deleted=True)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or nickname already
        exists. Callers check first and treat IntegrityError as a lost race.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    hashed_password=user.hashed_password,
                    nickname=user.nickname,
                    role=user.role,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str, include_deleted: bool = False) -> User | None:
        """Look up a user by normalized email. Returns None if not found.

        include_deleted=True is what login and signup use: a withdrawn account
        must still block its email and must fail login exactly like any other
        account with a wrong password.
        """
        query = _users.select().where(_users.c.email == email)
        if not include_deleted:
            query = query.where(_users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int, include_deleted: bool = False) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        query = _users.select().where(_users.c.id == user_id)
        if not include_deleted:
            query = query.where(_users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        """True if any account, withdrawn or not, already uses this email."""
        return self.get_by_email(email, include_deleted=True) is not None

    def nickname_exists(self, nickname: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.nickname == nickname)
            ).scalar()
        return (count or 0) > 0

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace a user's password hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    def update_nickname(self, user_id: int, nickname: str) -> bool:
        """Rename an active user. Returns False if none was updated.

        Raises sqlalchemy.exc.IntegrityError if another account holds the nickname.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.deleted_at.is_(None)))
                .values(nickname=nickname)
            )
            conn.commit()
        return result.rowcount > 0

    def soft_delete(self, user_id: int) -> bool:
        """Stamp deleted_at on an active user. Returns False if none was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.deleted_at.is_(None)))
                .values(deleted_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password reset codes
    # ------------------------------------------------------------------

    def create_reset_code(self, user_id: int, code_hash: str, expires_at: datetime) -> int:
        """Store a new reset code, retiring any earlier unused code for the user."""
        with self.engine.begin() as conn:
            conn.execute(
                _reset_codes.update()
                .where((_reset_codes.c.user_id == user_id) & (_reset_codes.c.used == 0))
                .values(used=1)
            )
            result = conn.execute(
                _reset_codes.insert().values(
                    user_id=user_id,
                    code_hash=code_hash,
                    expires_at=expires_at.isoformat(),
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_pending_reset_code(self, user_id: int) -> ResetCode | None:
        """Return the newest unused reset code for a user, expired or not.

        Expiry is the caller's check: the flow compares expires_at to now.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _reset_codes.select()
                .where((_reset_codes.c.user_id == user_id) & (_reset_codes.c.used == 0))
                .order_by(_reset_codes.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_reset_code(row) if row is not None else None

    def mark_reset_code_used(self, code_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_reset_codes.update().where(_reset_codes.c.id == code_id).values(used=1))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        nickname=row.nickname,
        role=row.role,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_reset_code(row) -> ResetCode:
    return ResetCode(
        id=row.id,
        user_id=row.user_id,
        code_hash=row.code_hash,
        expires_at=parse_iso(row.expires_at),
        used=bool(row.used),
        created_at=row.created_at,
    )
