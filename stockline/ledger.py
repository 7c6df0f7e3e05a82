"""
Append-only transaction ledger.

The ledger table is the single source of truth for inventory. Rows are only
ever appended or voided in place; current stock is a fold over the Valid rows,
served from a read-through cache that every write invalidates before returning.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import pytz

from stockline.cache import MemoryCache
from stockline.config import Config
from stockline.errors import CollaboratorFailure, NotFoundError
from stockline.models import (
    COL_ACTOR, COL_STATUS, COL_TIMESTAMP, COL_VOID_REASON, LEDGER_HEADER,
    PROTECTED_COLUMNS, SERIAL_WIDTH, Material, MaterialAccumulator, RecordKind,
    RecordStatus, TransactionRecord,
)
from stockline.tables import TableStore

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
TIMESTAMP_FALLBACK_FORMATS = (TIMESTAMP_FORMAT, "%Y/%m/%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S")

DEFAULT_INVENTORY_TTL = 300
DEFAULT_RECORDS_LIMIT = 5


def get_time_in_timezone(timezone_str: Optional[str] = None) -> datetime:
    """
    Get current time in the given timezone, or local time if not specified.

    Args:
        timezone_str: Timezone name (e.g., 'Asia/Taipei') or None for local time

    Returns:
        datetime: Naive datetime in the requested timezone
    """
    if not timezone_str:
        return datetime.now()
    try:
        target_tz = pytz.timezone(timezone_str)
    except pytz.UnknownTimeZoneError:
        logging.getLogger('ledger').warning(f"Unknown timezone '{timezone_str}', using local time")
        return datetime.now()
    return datetime.now(pytz.UTC).astimezone(target_tz).replace(tzinfo=None)


def parse_timestamp(value: str) -> datetime:
    for fmt in TIMESTAMP_FALLBACK_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt)
        except (AttributeError, ValueError):
            continue
    return datetime.min


class LedgerStore:
    """
    Sole writer of transaction records.

    Flow handlers request writes through ``append``/``void``/``overwrite_cells``
    and read through the materialized inventory. A check followed by a write that
    depends on it (stock sufficiency, serial allocation) runs under ``lock`` so
    two users in this process cannot interleave.
    """

    def __init__(self, tables: TableStore, config: Config,
                 cache: Optional[MemoryCache] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the ledger.

        Args:
            tables: Tabular store holding the ledger table
            config: Resolves the table name, cache key, expiry and timezone
            cache: Shared process-wide cache (a private one is created if omitted)
            clock: Returns "now"; defaults to the configured timezone
        """
        self.tables = tables
        self.config = config
        self.cache = cache or MemoryCache()
        self.clock = clock or (lambda: get_time_in_timezone(config.get("TIMEZONE")))
        self.logger = logging.getLogger('ledger')
        self.lock = threading.RLock()

    @property
    def table(self) -> str:
        return self.config.get("SHEET_NAME_RECORDS", "Records")

    @property
    def cache_key(self) -> str:
        return self.config.get("CACHE_KEY_INVENTORY", "inventory_map")

    def _now(self) -> str:
        return self.clock().strftime(TIMESTAMP_FORMAT)

    def ensure_ledger(self) -> bool:
        """Write the header row if the ledger table is empty."""
        try:
            if not self.tables.read_all_rows(self.table):
                self.tables.append_row(self.table, LEDGER_HEADER)
                self.logger.info(f"Created ledger header in table '{self.table}'")
            return True
        except CollaboratorFailure as e:
            self.logger.error(f"Could not verify ledger table '{self.table}': {e.as_dict()}")
            return False

    def _read_records(self) -> List[TransactionRecord]:
        rows = self.tables.read_all_rows(self.table)
        records = []
        for index, values in enumerate(rows[1:], start=2):
            record = TransactionRecord.from_row(values, row=index)
            if record is not None:
                records.append(record)
        return records

    # ===== WRITES =====

    def append(self, record: TransactionRecord) -> bool:
        """
        Append a new Valid transaction row.

        Args:
            record: Record to write; status, void reason and timestamp are assigned here

        Returns:
            bool: True if the row was written. A False result has already been logged.
        """
        row = record.copy(
            status=RecordStatus.VALID,
            void_reason="",
            timestamp=self._now(),
        ).to_row()
        try:
            position = self.tables.append_row(self.table, row)
            self.logger.info(
                f"Appended {record.kind.value} {record.key} qty={record.quantity} "
                f"by {record.actor_name} at row {position}"
            )
            return True
        except CollaboratorFailure as e:
            self.logger.error(f"Ledger append failed for {record.key}: {e.as_dict()}")
            return False
        finally:
            self.invalidate_cache()

    def void(self, row: int, reason: str, actor_name: str) -> bool:
        """
        Void an existing row in place.

        Only the status, reason, actor and timestamp columns change; no row is
        created or deleted.

        Args:
            row: Physical row number of the record
            reason: Why the record was voided
            actor_name: Display name of the user voiding it

        Returns:
            bool: True if all cells were written

        Raises:
            NotFoundError: If the row does not hold a ledger record
        """
        try:
            self.get_record(row)
            self.tables.write_cell(self.table, row, COL_STATUS, RecordStatus.VOID.value)
            self.tables.write_cell(self.table, row, COL_VOID_REASON, reason)
            self.tables.write_cell(self.table, row, COL_ACTOR, actor_name)
            self.tables.write_cell(self.table, row, COL_TIMESTAMP, self._now())
            self.logger.info(f"Voided row {row} by {actor_name}: {reason}")
            return True
        except CollaboratorFailure as e:
            self.logger.error(f"Ledger void failed for row {row}: {e.as_dict()}")
            return False
        finally:
            self.invalidate_cache()

    def overwrite_cells(self, row: int, column_values: Dict[int, Any]) -> bool:
        """
        Set auxiliary columns of a row, e.g. the audit reason after an edit.

        Quantity, kind, status and identity columns are refused, so stock can
        never change through this path and the cache stays valid.

        Args:
            row: Physical row number
            column_values: Mapping of 1-based column number to value

        Returns:
            bool: True if all cells were written
        """
        protected = PROTECTED_COLUMNS.intersection(column_values)
        if protected:
            raise ValueError(f"Columns {sorted(protected)} cannot be overwritten")
        try:
            for column, value in column_values.items():
                self.tables.write_cell(self.table, row, column, value)
            self.logger.info(f"Row {row} cells updated: {column_values}")
            return True
        except CollaboratorFailure as e:
            self.logger.error(f"Cell overwrite failed for row {row}: {e.as_dict()}")
            return False

    def invalidate_cache(self):
        self.cache.remove(self.cache_key)
        self.logger.debug("Inventory cache invalidated")

    # ===== READS =====

    def materialized_inventory(self) -> Dict[str, Material]:
        """
        Current stock per composite key.

        Returns:
            Dict[str, Material]: Fresh dict on every call; empty if the table is unreachable
        """
        cached = self.cache.get(self.cache_key)
        if cached is not None:
            self.logger.debug("Inventory served from cache")
            return dict(cached)

        self.logger.debug("Inventory cache miss, rescanning ledger")
        generation = self.cache.generation(self.cache_key)
        try:
            records = self._read_records()
        except CollaboratorFailure as e:
            self.logger.error(f"Could not read ledger: {e.as_dict()}")
            return {}

        folded: Dict[str, MaterialAccumulator] = {}
        for record in records:
            if not record.is_valid:
                continue
            acc = folded.get(record.key)
            if acc is None:
                acc = folded[record.key] = MaterialAccumulator(latest=record)
            acc.add(record)

        materials = {key: acc.freeze() for key, acc in folded.items()}
        ttl = self.config.get_int("CACHE_EXPIRATION_INVENTORY", DEFAULT_INVENTORY_TTL)
        self.cache.put_if_generation(self.cache_key, materials, ttl, generation)
        return dict(materials)

    def find_material(self, key: str) -> Optional[Material]:
        """Exact composite-key lookup; whitespace and case are ignored."""
        normalized = "".join((key or "").split()).upper()
        if not normalized:
            return None
        return self.materialized_inventory().get(normalized)

    def search_materials(self, query: str) -> List[Material]:
        """
        Substring search on material names, ignoring case and whitespace.

        Args:
            query: User-typed search text

        Returns:
            List[Material]: All matches sorted by category then serial
        """
        needle = "".join((query or "").split()).lower()
        if not needle:
            return []
        matches = [
            material for material in self.materialized_inventory().values()
            if needle in "".join(material.name.split()).lower()
        ]
        return sorted(matches, key=lambda m: (m.category, m.serial))

    def all_materials(self) -> List[Material]:
        return sorted(self.materialized_inventory().values(), key=lambda m: (m.category, m.serial))

    def material_exists(self, name: str, model: str = "", spec: str = "") -> Optional[Material]:
        """Return an existing material with identical name, model and spec, if any."""
        wanted = (name.strip(), (model or "").strip(), (spec or "").strip())
        for material in self.materialized_inventory().values():
            if (material.name.strip(), material.model.strip(), material.spec.strip()) == wanted:
                return material
        return None

    def next_serial(self, category: str) -> str:
        """
        Allocate the next serial for a category.

        Void rows count as well, so a key whose Created row was voided is never
        handed out again.

        Raises:
            CollaboratorFailure: If the ledger cannot be read
        """
        wanted = category.strip().upper()
        max_serial = 0
        for record in self._read_records():
            if record.category.upper() != wanted:
                continue
            if record.serial.isdigit():
                max_serial = max(max_serial, int(record.serial))
        return str(max_serial + 1).zfill(SERIAL_WIDTH)

    def records_by_actor(self, actor_name: str, limit: Optional[int] = None) -> List[TransactionRecord]:
        """
        Latest records authored by a user, newest first.

        Void records are included so users can see what was corrected.

        Args:
            actor_name: Display name stored in the actor column
            limit: Maximum records; defaults to RECORDS_FETCH_LIMIT or 5

        Returns:
            List[TransactionRecord]: Empty if the ledger is unreachable
        """
        if limit is None:
            limit = self.config.get_int("RECORDS_FETCH_LIMIT", DEFAULT_RECORDS_LIMIT)
        try:
            records = [r for r in self._read_records() if r.actor_name == actor_name]
        except CollaboratorFailure as e:
            self.logger.error(f"Could not read records for {actor_name}: {e.as_dict()}")
            return []
        records.sort(key=lambda r: (parse_timestamp(r.timestamp), r.row or 0), reverse=True)
        return records[:limit]

    def get_record(self, row: int) -> TransactionRecord:
        """
        Load the record at a physical row.

        Raises:
            NotFoundError: Header row, blank row, or row past the end
            CollaboratorFailure: If the ledger cannot be read
        """
        if row is None or row < 2:
            raise NotFoundError("Not a ledger row", row=row)
        values = self.tables.get_row(self.table, row)
        record = TransactionRecord.from_row(values, row=row) if values else None
        if record is None:
            raise NotFoundError("Ledger row not found", row=row)
        return record

    def stock_of(self, key: str) -> int:
        material = self.find_material(key)
        return material.stock if material else 0


def created_record(category: str, serial: str, name: str, unit: str, quantity: int,
                   actor_name: str, model: str = "", spec: str = "",
                   photo_ref: str = "") -> TransactionRecord:
    """Build the Created-kind record that establishes a new identity."""
    return TransactionRecord(
        category=category, serial=serial, name=name, unit=unit,
        quantity=abs(quantity), kind=RecordKind.CREATED,
        model=model, spec=spec, actor_name=actor_name, photo_ref=photo_ref,
    )
