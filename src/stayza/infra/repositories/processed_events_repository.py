"""Processed events repository - receipt dedupe for external signals.

Uses raw SQL with psycopg2 (no ORM).
"""

from psycopg2.extensions import cursor as PgCursor


def record_processed_event(cur: PgCursor, *, source: str, external_id: str) -> bool:
    """Record receipt of an external event.

    Uses ON CONFLICT DO NOTHING so concurrent deliveries of the same
    event id race on the primary key.

    Returns:
        True if this is the first receipt, False if already recorded.
    """
    cur.execute(
        """
        INSERT INTO processed_events (source, external_id)
        VALUES (%s, %s)
        ON CONFLICT (source, external_id) DO NOTHING
        """,
        (source, external_id),
    )
    return cur.rowcount == 1
