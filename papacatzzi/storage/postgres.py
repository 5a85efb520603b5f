from __future__ import annotations

from typing import Any, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from papacatzzi.logging import get_logger
from papacatzzi.storage.errors import ConstraintViolation
from papacatzzi.storage.models import Account, normalize_email

# Postgres names inline UNIQUE constraints <table>_<column>_key
_CONSTRAINT_FIELDS = {
    "account_pkey": "id",
    "account_email_key": "email",
    "account_username_key": "username",
    "account_federated_id_key": "federated_id",
}

_ACCOUNT_COLUMNS = "id, email, username, password_hash, federated_id, is_active, created_at"


class PostgresStore:
    """Credential store backed by a single ``account`` table."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``account`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS account (
                    id UUID PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    username TEXT UNIQUE,
                    password_hash TEXT,
                    federated_id TEXT UNIQUE,
                    is_active BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _account_from_row(row: dict[str, Any]) -> Account:
        return Account(
            id=str(row["id"]),
            email=row["email"],
            username=row.get("username"),
            password_hash=row.get("password_hash"),
            federated_id=row.get("federated_id"),
            is_active=bool(row.get("is_active", False)),
            created_at=row["created_at"],
        )

    @staticmethod
    def _constraint_violation(exc: errors.UniqueViolation) -> ConstraintViolation:
        constraint = getattr(exc.diag, "constraint_name", None) or ""
        field = _CONSTRAINT_FIELDS.get(constraint)
        return ConstraintViolation(
            f"{field or 'value'} already exists",
            field=field,
            detail={"constraint": constraint} if constraint else None,
        )

    def _fetch_one(self, where: str, value: Any) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM account WHERE {where} = %s", (value,)
            ).fetchone()
        return self._account_from_row(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        return self._fetch_one("email", normalize_email(email))

    def get_account_by_username(self, username: str) -> Optional[Account]:
        return self._fetch_one("username", username)

    def get_account_by_federated_id(self, federated_id: str) -> Optional[Account]:
        if not federated_id:
            return None
        return self._fetch_one("federated_id", federated_id)

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._fetch_one("id", account_id)

    def insert_account(self, account: Account) -> Account:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO account (id, email, username, password_hash, federated_id, is_active, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (
                        account.id,
                        normalize_email(account.email),
                        account.username,
                        account.password_hash,
                        account.federated_id,
                        account.is_active,
                        account.created_at,
                    ),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise self._constraint_violation(exc) from exc
        return self._account_from_row(row)

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE account SET password_hash = %s WHERE id = %s RETURNING {_ACCOUNT_COLUMNS}",
                (password_hash, account_id),
            ).fetchone()
        return self._account_from_row(row) if row else None

    def update_federated_id(self, account_id: str, federated_id: str) -> Optional[Account]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"UPDATE account SET federated_id = %s WHERE id = %s RETURNING {_ACCOUNT_COLUMNS}",
                    (federated_id, account_id),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise self._constraint_violation(exc) from exc
        return self._account_from_row(row) if row else None

    def activate_account(
        self,
        account_id: str,
        *,
        username: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> Optional[Account]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    UPDATE account
                    SET username = COALESCE(%s, username),
                        password_hash = COALESCE(%s, password_hash),
                        is_active = TRUE
                    WHERE id = %s
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (username, password_hash, account_id),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise self._constraint_violation(exc) from exc
        return self._account_from_row(row) if row else None
