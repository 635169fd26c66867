"""
Year-scoped document numbers: ``EST-2026-0001``, ``QTN-2026-0042``.

Numbers come from an atomic per-prefix, per-year counter that is raised to
at least the highest number already persisted, so concurrent creations
never share a number. The number fields also carry unique indexes;
:func:`create_numbered` retries on the rare duplicate key.
"""
import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from database.operations import EntityStore
from logging_config import logger
from services.exceptions import ConflictError

ESTIMATION_PREFIX = "EST"
QUOTATION_PREFIX = "QTN"

NUMBER_PATTERN = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<year>\d{4})-(?P<seq>\d+)$")
MAX_ATTEMPTS = 5


def format_number(prefix: str, year: int, seq: int) -> str:
    return f"{prefix}-{year:04d}-{seq:04d}"


def parse_number(number: str) -> Optional[Tuple[str, int, int]]:
    match = NUMBER_PATTERN.match(number or "")
    if not match:
        return None
    return match["prefix"], int(match["year"]), int(match["seq"])


async def latest_sequence(store: EntityStore, collection: str, field: str, prefix: str, year: int) -> int:
    """Trailing sequence of the highest persisted number for ``prefix`` in ``year``, 0 if none."""
    latest = await store.find(collection, {}, sort=[(field, -1)], limit=1)
    if not latest:
        return 0
    parsed = parse_number(latest[0].get(field))
    if parsed and parsed[0] == prefix and parsed[1] == year:
        return parsed[2]
    return 0


async def next_number(
    store: EntityStore,
    collection: str,
    field: str,
    prefix: str,
    now: Optional[datetime] = None,
) -> str:
    year = (now or datetime.utcnow()).year
    floor = await latest_sequence(store, collection, field, prefix, year)
    seq = await store.next_sequence(f"{prefix}-{year}", floor)
    return format_number(prefix, year, seq)


def is_duplicate_of(error: DuplicateKeyError, field: str) -> bool:
    key_pattern = (error.details or {}).get("keyPattern") or {}
    return field in key_pattern


async def create_numbered(
    store: EntityStore,
    collection: str,
    field: str,
    prefix: str,
    doc: Dict[str, Any],
) -> Dict[str, Any]:
    """Persist ``doc`` under a freshly allocated number, retrying if the number is taken."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        number = await next_number(store, collection, field, prefix)
        try:
            return await store.create(collection, {**doc, field: number})
        except DuplicateKeyError as e:
            if not is_duplicate_of(e, field):
                raise
            logger.warning(f"{field} {number} already taken (attempt {attempt}/{MAX_ATTEMPTS})")
    raise ConflictError(f"Could not allocate a unique {field.replace('_', ' ')}")
