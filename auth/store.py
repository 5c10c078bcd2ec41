"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
Services never touch SQL directly.

Transactions:
  Single-statement reads and writes use engine.connect() + commit().
  Every multi-row unit of work (create user + verification row, redeem a
  verification, OAuth link-or-create) runs inside engine.begin(). Raising
  anywhere inside the block -- including PersistenceError on a write that
  touched zero rows -- rolls back every write of the unit. No partial state.

Security:
  All queries use bound parameters. No f-strings in SQL.
  UNIQUE(email) is the guard against concurrent duplicate sign-ups; the
  losing request gets DuplicateAccountError instead of a second account.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision so lexicographic order equals chronological order.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateAccountError, PersistenceError
from auth.models import EmailVerification, OAuthAccount, OAuthProfile, OAuthTokens, Session, User

_DEFAULT_DB_URL = "sqlite:///sessiongate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(15), primary_key=True),
    Column("email", String(255), unique=True),  # NULL only for email-less OAuth users
    Column("hashed_password", Text),  # NULL for OAuth-only users
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("name", String(255)),
    Column("profile_picture_url", Text),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(15), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("ttl_seconds", Integer),  # lifetime the session was issued with
)

_email_verifications = Table(
    "email_verifications",
    _metadata,
    Column("id", String(15), primary_key=True),
    Column("user_id", String(15), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("code", String(16), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_oauth_accounts = Table(
    "oauth_accounts",
    _metadata,
    Column("id", String(15), primary_key=True),
    Column("user_id", String(15), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("provider", String(30), nullable=False),  # "google", "github"
    Column("provider_user_id", String(255), nullable=False),
    Column("access_token", Text, nullable=False),
    Column("refresh_token", Text),
    Column("expires_at", String(32)),
    UniqueConstraint("provider", "provider_user_id", name="uq_oauth_provider_subject"),
    UniqueConstraint("user_id", "provider", name="uq_oauth_user_provider"),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON is what makes the
    ON DELETE CASCADE clauses above take effect.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
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


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Session, EmailVerification and OAuthAccount.

    Usage:
        store = UserStore("sqlite:///sessiongate.db")
        store.create_user(User(id=generate_id(15), email="a@x.com", hashed_password=hash_password("s3cret!!")))
        user = store.get_user_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a standalone user record and return its id.

        Raises DuplicateAccountError if the email is already registered.
        Used for seeding (first admin, fixtures); sign-up goes through
        create_user_with_verification() instead.
        """
        try:
            with self.engine.begin() as conn:
                self._insert_user(conn, user)
        except IntegrityError as exc:
            raise DuplicateAccountError() from exc
        return user.id

    def create_user_with_verification(self, user: User, verification: EmailVerification) -> None:
        """Insert an unverified user and its first verification row atomically.

        Raises DuplicateAccountError if the email is taken; neither row is
        written in that case.
        """
        try:
            with self.engine.begin() as conn:
                if self._insert_user(conn, user) == 0:
                    raise PersistenceError("Failed to create user")
                if self._insert_verification(conn, verification) == 0:
                    raise PersistenceError("Failed to create email verification")
        except IntegrityError as exc:
            raise DuplicateAccountError() from exc

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found.

        The comparison is exact; auth.schemas lowercases addresses before
        they reach the store, so stored emails are already normalized.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: hashed_password, is_email_verified, role, name,
        profile_picture_url. Booleans are converted to int for SQLite.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_email_verified" in fields:
            fields["is_email_verified"] = 1 if fields["is_email_verified"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    expires_at=_to_iso(session.expires_at),
                    ttl_seconds=session.ttl_seconds,
                )
            )
            conn.commit()

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_session_and_user(self, session_id: str) -> tuple[Session, User] | None:
        """Fetch a session together with its owner in one round-trip."""
        stmt = (
            select(
                _sessions.c.id.label("session_id"),
                _sessions.c.expires_at.label("session_expires_at"),
                _sessions.c.ttl_seconds.label("session_ttl_seconds"),
                *_users.c,
            )
            .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
            .where(_sessions.c.id == session_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        if row is None:
            return None
        session = Session(
            id=row.session_id,
            user_id=row.id,
            expires_at=_from_iso(row.session_expires_at),
            ttl_seconds=row.session_ttl_seconds,
        )
        return session, _row_to_user(row)

    def list_user_sessions(self, user_id: str) -> list[Session]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.expires_at)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def update_session_expiry(self, session_id: str, expires_at: datetime) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.id == session_id).values(expires_at=_to_iso(expires_at))
            )
            conn.commit()
        return result.rowcount > 0

    def delete_session(self, session_id: str) -> bool:
        """Remove a session row. Returns False when it was already gone."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def delete_expired_sessions(self, now: datetime) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= _to_iso(now)))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def get_verification(self, user_id: str) -> EmailVerification | None:
        """Return the user's live verification row, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _email_verifications.select().where(_email_verifications.c.user_id == user_id)
            ).fetchone()
        return _row_to_verification(row) if row is not None else None

    def create_verification(self, verification: EmailVerification) -> None:
        """Insert a verification row for a user that has none.

        Raises PersistenceError if the user already holds one (a concurrent
        resend won the UNIQUE(user_id) race) or the insert wrote nothing.
        """
        try:
            with self.engine.begin() as conn:
                if self._insert_verification(conn, verification) == 0:
                    raise PersistenceError("Failed to create email verification")
        except IntegrityError as exc:
            raise PersistenceError("Failed to create email verification") from exc

    def replace_verification_code(self, user_id: str, code: str, created_at: datetime) -> bool:
        """Overwrite the live row's code and timestamp in place (resend)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _email_verifications.update()
                .where(_email_verifications.c.user_id == user_id)
                .values(code=code, created_at=_to_iso(created_at))
            )
            conn.commit()
        return result.rowcount > 0

    def redeem_verification(self, user_id: str, code: str) -> bool:
        """Consume the verification row matching BOTH user_id and code, mark the user verified.

        Returns False when no live row matches (stale link after a resend, or
        a link that was already redeemed). The delete doubles as the lock: of
        two concurrent redemptions only one deletes the row.

        Raises PersistenceError (rolling the delete back) if the user row
        cannot be updated.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _email_verifications.delete().where(
                    and_(
                        _email_verifications.c.user_id == user_id,
                        _email_verifications.c.code == code,
                    )
                )
            )
            if deleted.rowcount == 0:
                return False
            updated = conn.execute(_users.update().where(_users.c.id == user_id).values(is_email_verified=1))
            if updated.rowcount == 0:
                raise PersistenceError("Failed to mark email as verified")
        return True

    # ------------------------------------------------------------------
    # OAuth accounts
    # ------------------------------------------------------------------

    def get_oauth_account(self, provider: str, provider_user_id: str) -> OAuthAccount | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _oauth_accounts.select().where(
                    and_(
                        _oauth_accounts.c.provider == provider,
                        _oauth_accounts.c.provider_user_id == provider_user_id,
                    )
                )
            ).fetchone()
        return _row_to_oauth_account(row) if row is not None else None

    def list_oauth_accounts(self, user_id: str) -> list[OAuthAccount]:
        with self.engine.connect() as conn:
            rows = conn.execute(_oauth_accounts.select().where(_oauth_accounts.c.user_id == user_id)).fetchall()
        return [_row_to_oauth_account(r) for r in rows]

    def link_or_create_oauth_user(
        self,
        profile: OAuthProfile,
        tokens: OAuthTokens,
        new_user_id: str,
        new_account_id: str,
    ) -> tuple[str, bool]:
        """Resolve the local user for a provider identity inside one transaction.

        Keyed on (provider, provider_user_id) -- never on email, so a provider
        account that merely claims someone's address cannot take over their
        local account.

        Returning identity: refresh the account's access/refresh/expiry.
        First login: insert User (implicitly verified, no password) and the
        OAuthAccount. An email already owned by another user aborts with
        DuplicateAccountError.

        Returns (user_id, created). Any zero-row write raises PersistenceError
        and nothing of the unit is committed.
        """
        try:
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(_oauth_accounts.c.user_id).where(
                        and_(
                            _oauth_accounts.c.provider == profile.provider,
                            _oauth_accounts.c.provider_user_id == profile.provider_user_id,
                        )
                    )
                ).fetchone()

                if existing is not None:
                    if self._update_oauth_tokens(conn, profile, tokens) == 0:
                        raise PersistenceError("Failed to update OAuth account")
                    return existing.user_id, False

                if profile.email:
                    taken = conn.execute(select(_users.c.id).where(_users.c.email == profile.email)).fetchone()
                    if taken is not None:
                        raise DuplicateAccountError()

                user = User(
                    id=new_user_id,
                    email=profile.email,
                    hashed_password=None,
                    is_email_verified=True,
                    name=profile.name,
                    profile_picture_url=profile.avatar_url,
                )
                if self._insert_user(conn, user) == 0:
                    raise PersistenceError("Failed to create user")

                account = OAuthAccount(
                    id=new_account_id,
                    user_id=new_user_id,
                    provider=profile.provider,
                    provider_user_id=profile.provider_user_id,
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token,
                    expires_at=tokens.expires_at,
                )
                if self._insert_oauth_account(conn, account) == 0:
                    raise PersistenceError("Failed to create OAuth account")
                return new_user_id, True
        except IntegrityError as exc:
            raise PersistenceError() from exc

    # ------------------------------------------------------------------
    # Statement helpers (run on a caller-owned connection / transaction)
    # ------------------------------------------------------------------

    def _insert_user(self, conn: Connection, user: User) -> int:
        result = conn.execute(
            _users.insert().values(
                id=user.id,
                email=user.email,
                hashed_password=user.hashed_password,
                is_email_verified=1 if user.is_email_verified else 0,
                role=user.role,
                name=user.name,
                profile_picture_url=user.profile_picture_url,
                created_at=user.created_at or _now_iso(),
            )
        )
        return result.rowcount

    def _insert_verification(self, conn: Connection, verification: EmailVerification) -> int:
        result = conn.execute(
            _email_verifications.insert().values(
                id=verification.id,
                user_id=verification.user_id,
                code=verification.code,
                created_at=_to_iso(verification.created_at),
            )
        )
        return result.rowcount

    def _insert_oauth_account(self, conn: Connection, account: OAuthAccount) -> int:
        result = conn.execute(
            _oauth_accounts.insert().values(
                id=account.id,
                user_id=account.user_id,
                provider=account.provider,
                provider_user_id=account.provider_user_id,
                access_token=account.access_token,
                refresh_token=account.refresh_token,
                expires_at=_to_iso(account.expires_at),
            )
        )
        return result.rowcount

    def _update_oauth_tokens(self, conn: Connection, profile: OAuthProfile, tokens: OAuthTokens) -> int:
        result = conn.execute(
            _oauth_accounts.update()
            .where(
                and_(
                    _oauth_accounts.c.provider == profile.provider,
                    _oauth_accounts.c.provider_user_id == profile.provider_user_id,
                )
            )
            .values(
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=_to_iso(tokens.expires_at),
            )
        )
        return result.rowcount

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
        is_email_verified=bool(row.is_email_verified),
        role=row.role,
        name=row.name,
        profile_picture_url=row.profile_picture_url,
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        expires_at=_from_iso(row.expires_at),
        ttl_seconds=row.ttl_seconds,
    )


def _row_to_verification(row) -> EmailVerification:
    return EmailVerification(
        id=row.id,
        user_id=row.user_id,
        code=row.code,
        created_at=_from_iso(row.created_at),
    )


def _row_to_oauth_account(row) -> OAuthAccount:
    return OAuthAccount(
        id=row.id,
        user_id=row.user_id,
        provider=row.provider,
        provider_user_id=row.provider_user_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=_from_iso(row.expires_at),
    )
