"""
Protocol Counter

Issues human-readable, date-scoped protocol numbers:

    <PREFIX>-<YYYYMMDD>-<NNNN>

One counter row per calendar day, created lazily on the first request of the
day and incremented for every later one. The read-increment-write is a single
upsert statement, so two callers can never observe the same counter value,
and increments for the same day are additionally serialized in-process.
Counter rows are never decremented or deleted; a number handed out and then
abandoned is simply skipped.
"""
import logging
import re
from datetime import date, datetime
from typing import Callable, Optional, Tuple

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import ProtocolCounterDB
from .errors import StorageError
from .locks import protocol_locks

logger = logging.getLogger(__name__)

COUNTER_WIDTH = 4

# Dialects with INSERT ... ON CONFLICT DO UPDATE ... RETURNING
UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def date_key_for(day: date) -> str:
    return day.strftime("%Y%m%d")


def format_protocol(prefix: str, date_key: str, counter: int) -> str:
    return f"{prefix}-{date_key}-{counter:0{COUNTER_WIDTH}d}"


def parse_protocol(prefix: str, protocol_number: str) -> Optional[Tuple[str, int]]:
    """Split a protocol into (date_key, counter), or None if it is not one of ours."""
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d{{8}})-(\d{{{COUNTER_WIDTH},}})", protocol_number or "")
    if match is None:
        return None
    return match.group(1), int(match.group(2))


class ProtocolCounter:
    """
    Daily protocol number generator.

    Every call to next_protocol() consumes one counter value for the day.
    """

    def __init__(
        self,
        db_session: Session,
        prefix: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.prefix = prefix or config.PROTOCOL_PREFIX
        self.clock = clock or datetime.now

    def next_protocol(self, today: Optional[date] = None, commit: bool = True) -> str:
        """
        Reserve the next protocol number for a day.

        Args:
            today: Calendar day to number against (defaults to the clock's date)
            commit: Commit the increment immediately. Pass False to make the
                increment part of the caller's transaction; the day's counter
                row stays locked until the caller commits.

        Raises:
            StorageError: If the counter could not be read or written
        """
        if today is None:
            today = self.clock().date()
        date_key = date_key_for(today)

        with protocol_locks.hold(date_key):
            try:
                counter = self._increment(date_key)
                if commit:
                    self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Protocol counter unavailable for {date_key}: {e}")
                raise StorageError(f"Protocol counter unavailable for {date_key}") from e

        protocol = format_protocol(self.prefix, date_key, counter)
        logger.info(f"Issued protocol {protocol}")
        return protocol

    def peek(self, today: date) -> int:
        """Last counter value issued for a day (0 if none)."""
        row = self.db.query(ProtocolCounterDB).filter(
            ProtocolCounterDB.date_key == date_key_for(today)
        ).first()
        return row.counter if row else 0

    def issued(self, protocol_number: str) -> bool:
        """True if the protocol has this counter's format and was already handed out."""
        parsed = parse_protocol(self.prefix, protocol_number)
        if parsed is None:
            return False
        date_key, counter = parsed
        row = self.db.query(ProtocolCounterDB).filter(
            ProtocolCounterDB.date_key == date_key
        ).first()
        return row is not None and 0 < counter <= row.counter

    def _increment(self, date_key: str) -> int:
        dialect = self.db.get_bind().dialect.name
        insert = UPSERT_DIALECTS.get(dialect)

        if insert is not None:
            stmt = (
                insert(ProtocolCounterDB)
                .values(date_key=date_key, counter=1)
                .on_conflict_do_update(
                    index_elements=[ProtocolCounterDB.date_key],
                    set_={"counter": ProtocolCounterDB.counter + 1},
                )
                .returning(ProtocolCounterDB.counter)
            )
            return self.db.execute(stmt).scalar_one()

        # Generic path: lock the day's row, then insert or bump it
        row = self.db.query(ProtocolCounterDB).filter(
            ProtocolCounterDB.date_key == date_key
        ).with_for_update().first()

        if row is None:
            row = ProtocolCounterDB(date_key=date_key, counter=1)
            self.db.add(row)
        else:
            row.counter = row.counter + 1
        self.db.flush()
        return row.counter
