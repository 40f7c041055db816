"""
Synthetic Maxwell change events for a users table.

Every function takes its randomness from an explicit random.Random, so a
seeded generator reproduces the same event stream.
"""

import random
import time
from typing import Any

FIRST_NAMES = [
    "James", "Mary", "John", "Patricia", "Robert",
    "Jennifer", "Michael", "Linda", "William", "Elizabeth",
]
LAST_NAMES = [
    "Smith", "Johnson", "Williams", "Jones", "Brown",
    "Davis", "Miller", "Wilson", "Moore", "Taylor",
]
DOMAINS = ["example.com", "test.com", "sample.org", "mail.net"]
STATUSES = ["active", "inactive", "pending", "suspended"]

OPERATIONS = ("insert", "update", "upsert", "delete")

# Upserts hit an existing email this often
UPSERT_EXISTING_PROBABILITY = 0.5


def random_name(rng: random.Random) -> str:
    return f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}"


def random_email(rng: random.Random, name: str | None = None) -> str:
    """Lower-cased dotted name, a 10-hex-digit suffix and a random domain."""
    if name is None:
        name = random_name(rng)
    local = ".".join(name.lower().split())
    return f"{local}.{rng.getrandbits(40):010x}@{rng.choice(DOMAINS)}"


def random_status(rng: random.Random) -> str:
    return rng.choice(STATUSES)


def _event(
    rng: random.Random,
    change_type: str,
    database: str,
    table: str,
    data: dict[str, Any],
    now: float,
    old: dict[str, Any] | None = None,
) -> dict[str, Any]:
    event = {
        "database": database,
        "table": table,
        "type": change_type,
        "ts": int(now),
        "xid": rng.randint(1, 10**9),
        "commit": True,
        "data": data,
    }
    if old is not None:
        event["old"] = old
    return event


def generate_change_event(
    rng: random.Random,
    rows: dict[int, dict[str, Any]] | None = None,
    next_id: int = 1,
    database: str = "sample_db",
    table: str = "users",
    operation: str | None = None,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Build one Maxwell-style change event.

    Updates and deletes target a row from `rows`; with no known rows they
    fall back to an insert. An upsert becomes an update of a row matched by
    email or an insert of a new row.

    Args:
        rng: Source of randomness
        rows: Known table state, row id -> row (not modified)
        next_id: Id for an inserted row
        database: Source database name
        table: Source table name
        operation: Force an operation instead of choosing one
        now: Event time in seconds (default: current time)

    Returns:
        Event dict ready to JSON-encode
    """
    rows = rows or {}
    now = time.time() if now is None else now
    operation = operation or rng.choice(OPERATIONS)

    if operation == "upsert":
        if rows and rng.random() < UPSERT_EXISTING_PROBABILITY:
            operation = "update"
        else:
            operation = "insert"

    if operation in ("update", "delete") and not rows:
        operation = "insert"

    if operation == "insert":
        name = random_name(rng)
        data = {
            "id": next_id,
            "name": name,
            "email": random_email(rng, name),
            "status": random_status(rng),
        }
        return _event(rng, "insert", database, table, data, now)

    row_id = rng.choice(sorted(rows))
    row = rows[row_id]

    if operation == "delete":
        return _event(rng, "delete", database, table, dict(row), now)

    changes = {"name": random_name(rng), "status": random_status(rng)}
    old = {key: row.get(key) for key, value in changes.items() if row.get(key) != value}
    return _event(rng, "update", database, table, {**row, **changes}, now, old=old)


def apply_change_event(rows: dict[int, dict[str, Any]], event: dict[str, Any]) -> None:
    """Update the known table state with an event from generate_change_event."""
    data = event.get("data") or {}
    row_id = data.get("id")
    if row_id is None:
        return
    if event.get("type") == "delete":
        rows.pop(row_id, None)
    else:
        rows[row_id] = dict(data)


__all__ = [
    "OPERATIONS",
    "apply_change_event",
    "generate_change_event",
    "random_email",
    "random_name",
    "random_status",
]
