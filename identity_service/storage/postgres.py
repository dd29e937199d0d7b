from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from identity_service.logging import get_logger
from identity_service.storage.errors import ConstraintViolation
from identity_service.storage.models import RefreshToken, User, utcnow

_REQUIRED_TABLES = ("app_user", "refresh_token")


def _violated_field(exc: errors.UniqueViolation) -> Optional[str]:
    constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
    for field in ("username", "email", "token_hash"):
        if field in constraint:
            return field
    return None


def _user_from_row(row: dict[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        username=row["username"],
        email=row["email"],
        password_hash=row["password_hash"],
        created_at=row.get("created_at") or utcnow(),
    )


def _token_from_row(row: dict[str, Any]) -> RefreshToken:
    return RefreshToken(
        id=str(row["id"]),
        token_hash=row["token_hash"],
        user_id=str(row["user_id"]),
        expires_at=row["expires_at"],
        created_at=row.get("created_at") or utcnow(),
    )


class PostgresStore:
    """Postgres-backed credential store.

    Every write is a single statement so uniqueness and rotation atomicity
    come from the database rather than from application locks. The schema
    lives in ``scripts/schema.sql``.
    """

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        """Ensure the credential tables exist before serving requests."""

        with self._connect() as conn:
            missing_tables = []
            for table in _REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply scripts/schema.sql first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    # users
    def find_user_by_email_or_username(
        self, email: str, username: str
    ) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s OR username = %s LIMIT 1",
                (email, username),
            ).fetchone()
        return _user_from_row(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        return _user_from_row(row) if row else None

    def find_user_by_id(self, user_id: str) -> Optional[User]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM app_user WHERE id = %s", (user_id,)
                ).fetchone()
        except errors.InvalidTextRepresentation:
            # Not a UUID: a stale or tampered cache entry
            return None
        return _user_from_row(row) if row else None

    def create_user(self, username: str, email: str, password_hash: str) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (username, email, password_hash)
                    VALUES (%s, %s, %s)
                    RETURNING *
                    """,
                    (username, email, password_hash),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = _violated_field(exc)
            raise ConstraintViolation(f"{field or 'user'} already exists", field=field)
        return _user_from_row(row)

    # refresh tokens
    def find_refresh_token_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM refresh_token WHERE token_hash = %s", (token_hash,)
            ).fetchone()
        return _token_from_row(row) if row else None

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO refresh_token (id, token_hash, user_id, expires_at, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        token.id,
                        token.token_hash,
                        token.user_id,
                        token.expires_at,
                        token.created_at,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("token hash already exists", field="token_hash")
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("token owner does not exist", field="user_id")
        return _token_from_row(row)

    def update_refresh_token(
        self,
        token_id: str,
        new_hash: str,
        new_expires_at: datetime,
        *,
        expected_hash: Optional[str] = None,
    ) -> bool:
        query = "UPDATE refresh_token SET token_hash = %s, expires_at = %s WHERE id = %s"
        params: tuple = (new_hash, new_expires_at, token_id)
        if expected_hash is not None:
            # Compare-and-swap: a concurrent rotation already changed the hash
            query += " AND token_hash = %s"
            params += (expected_hash,)
        try:
            with self._connect() as conn:
                result = conn.execute(query, params)
                return result.rowcount > 0
        except errors.UniqueViolation:
            raise ConstraintViolation("token hash already exists", field="token_hash")

    def delete_refresh_token_by_id(self, token_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM refresh_token WHERE id = %s", (token_id,))
            return result.rowcount > 0

    def delete_refresh_token_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                "DELETE FROM refresh_token WHERE token_hash = %s RETURNING *",
                (token_hash,),
            ).fetchone()
        return _token_from_row(row) if row else None

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM refresh_token WHERE expires_at <= %s", (now or utcnow(),)
            )
            purged = result.rowcount
        if purged:
            self.logger.info("refresh_tokens_purged", count=purged)
        return purged

    def close(self) -> None:
        self.pool.close()
