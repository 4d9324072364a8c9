"""Shared pytest fixtures for Stayza tests."""
import os
import sys
from pathlib import Path

sys.dont_write_bytecode = True

import pytest  # noqa: E402

SCHEMA_DIR = Path(__file__).resolve().parents[1] / "migrations" / "sql"


@pytest.fixture(scope="session", autouse=True)
def _apply_schema():
    """Apply the (idempotent) schema files once when a database is available."""
    if not os.environ.get("DATABASE_URL"):
        yield
        return

    from stayza.infra.db import get_conn

    conn = get_conn()
    try:
        with conn.cursor() as cur:
            for sql_path in sorted(SCHEMA_DIR.glob("*.sql")):
                cur.execute(sql_path.read_text(encoding="utf-8"))
        conn.commit()
    finally:
        conn.close()
    yield


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Module-level JWKS cache must not leak keys between tests."""
    from stayza.api.auth import reset_jwks_cache

    reset_jwks_cache()
    yield
    reset_jwks_cache()


@pytest.fixture
def gateway_secrets(monkeypatch):
    """Gateway secrets used by signature tests."""
    monkeypatch.setenv("GATEWAY_KEY_ID", "rzp_test_key")
    monkeypatch.setenv("GATEWAY_KEY_SECRET", "key-secret")
    monkeypatch.setenv("GATEWAY_WEBHOOK_SECRET", "webhook-secret")
    return {"key_secret": b"key-secret", "webhook_secret": b"webhook-secret"}


@pytest.fixture
def db_hotel():
    """Factory for hotel rows; deletes everything it created afterwards."""
    if not os.environ.get("DATABASE_URL"):
        pytest.skip("DATABASE_URL not set")

    import uuid

    from stayza.infra.db import txn

    created: list[str] = []

    def _make(
        *,
        total_rooms: int = 10,
        available_rooms: int | None = None,
        base_price: int = 2000,
        commission_percent: int = 15,
        is_active: bool = True,
    ) -> str:
        hotel_id = f"test-hotel-{uuid.uuid4().hex[:12]}"
        with txn() as cur:
            cur.execute(
                """
                INSERT INTO hotels (
                    id, name, is_active, total_rooms, available_rooms,
                    base_price, commission_percent
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    hotel_id,
                    "Test Hotel",
                    is_active,
                    total_rooms,
                    total_rooms if available_rooms is None else available_rooms,
                    base_price,
                    commission_percent,
                ),
            )
        created.append(hotel_id)
        return hotel_id

    yield _make

    if created:
        with txn() as cur:
            for table in ("pending_refunds", "payout_ledger", "reservations"):
                cur.execute(f"DELETE FROM {table} WHERE hotel_id = ANY(%s)", (created,))
            cur.execute("DELETE FROM hotels WHERE id = ANY(%s)", (created,))
