"""
Ledger data model.

A TransactionRecord is one row of the ledger table. Materials are never stored;
they are folded out of the Valid records by the LedgerStore.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, List, Optional, Sequence

logger = logging.getLogger('ledger')

# ===== LEDGER LAYOUT =====

LEDGER_HEADER = [
    "category", "serial", "name", "model", "spec", "unit", "quantity",
    "kind", "status", "void_reason", "actor", "timestamp", "photo_ref",
]

# 1-based column numbers, as used by TableStore.write_cell
COL_CATEGORY = 1
COL_SERIAL = 2
COL_NAME = 3
COL_MODEL = 4
COL_SPEC = 5
COL_UNIT = 6
COL_QUANTITY = 7
COL_KIND = 8
COL_STATUS = 9
COL_VOID_REASON = 10
COL_ACTOR = 11
COL_TIMESTAMP = 12
COL_PHOTO_REF = 13

# Columns a void or audit overwrite may never touch through overwrite_cells
PROTECTED_COLUMNS = frozenset({COL_CATEGORY, COL_SERIAL, COL_QUANTITY, COL_KIND, COL_STATUS})

SERIAL_WIDTH = 3


class RecordKind(str, Enum):
    CREATED = "Created"
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"


class RecordStatus(str, Enum):
    VALID = "Valid"
    VOID = "Void"


class Direction(str, Enum):
    """Direction of a stock movement, as carried in postback data."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"

    @property
    def kind(self) -> RecordKind:
        return RecordKind.INBOUND if self is Direction.INBOUND else RecordKind.OUTBOUND

    def signed(self, quantity: int) -> int:
        return abs(quantity) if self is Direction.INBOUND else -abs(quantity)


def normalize_serial(value: Any) -> str:
    """
    Normalize a serial cell to zero-padded text.

    Spreadsheets may hand back ``1``, ``1.0``, ``"001"`` or ``"'001"`` for the
    same serial.
    """
    text = str(value if value is not None else "").strip().lstrip("'")
    if text.endswith(".0"):
        text = text[:-2]
    if text.isdigit():
        return text.zfill(SERIAL_WIDTH)
    return text


def parse_int(value: Any, default: int = 0) -> int:
    """Parse a numeric cell that may arrive as int, float or text."""
    if value is None or value == "":
        return default
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        logger.warning(f"Non-numeric quantity cell: {value!r}")
        return default


def composite_key(category: str, serial: str) -> str:
    return f"{category}{serial}".upper()


# ===== RECORDS =====

@dataclass
class TransactionRecord:
    """
    One ledger row.

    ``row`` is the physical row number in the ledger table. It is an addressing
    handle for void/overwrite only, never a business identity.
    """
    category: str
    serial: str
    name: str
    unit: str
    quantity: int
    kind: RecordKind
    model: str = ""
    spec: str = ""
    status: RecordStatus = RecordStatus.VALID
    void_reason: str = ""
    actor_name: str = ""
    timestamp: str = ""
    photo_ref: str = ""
    row: Optional[int] = None

    @property
    def key(self) -> str:
        return composite_key(self.category, self.serial)

    @property
    def is_valid(self) -> bool:
        return self.status is RecordStatus.VALID

    @property
    def magnitude(self) -> int:
        return abs(self.quantity)

    def to_row(self) -> List[Any]:
        """Serialize in ledger column order."""
        return [
            self.category,
            self.serial,
            self.name,
            self.model or "",
            self.spec or "",
            self.unit,
            int(self.quantity),
            self.kind.value,
            self.status.value,
            self.void_reason or "",
            self.actor_name,
            self.timestamp,
            self.photo_ref or "",
        ]

    @classmethod
    def from_row(cls, values: Sequence[Any], row: Optional[int] = None) -> Optional["TransactionRecord"]:
        """
        Parse a ledger row.

        Args:
            values: Raw cell values, possibly shorter than the full layout
            row: Physical row number

        Returns:
            Optional[TransactionRecord]: None for blank or unparseable rows
        """
        cells = list(values) + [""] * (len(LEDGER_HEADER) - len(values))
        if not str(cells[0]).strip():
            return None
        try:
            kind = RecordKind(str(cells[7]).strip())
            status = RecordStatus(str(cells[8]).strip())
        except ValueError:
            logger.warning(f"Skipping ledger row {row} with unknown kind/status: {cells[7]!r}/{cells[8]!r}")
            return None
        return cls(
            category=str(cells[0]).strip(),
            serial=normalize_serial(cells[1]),
            name=str(cells[2]),
            model=str(cells[3] or ""),
            spec=str(cells[4] or ""),
            unit=str(cells[5]),
            quantity=parse_int(cells[6]),
            kind=kind,
            status=status,
            void_reason=str(cells[9] or ""),
            actor_name=str(cells[10] or ""),
            timestamp=str(cells[11] or ""),
            photo_ref=str(cells[12] or ""),
            row=row,
        )

    def copy(self, **changes) -> "TransactionRecord":
        return replace(self, **changes)


@dataclass(frozen=True)
class Material:
    """
    Derived current state of one inventory item.

    Descriptive fields come from the most recent Valid record for the key, so a
    corrected name shows up as soon as the correction is appended.
    """
    category: str
    serial: str
    name: str
    unit: str
    stock: int
    model: str = ""
    spec: str = ""
    photo_ref: str = ""

    @property
    def key(self) -> str:
        return composite_key(self.category, self.serial)


@dataclass
class MaterialAccumulator:
    """Mutable fold state used while rebuilding the materialized view."""
    latest: TransactionRecord
    stock: int = 0
    photo_ref: str = ""

    def add(self, record: TransactionRecord):
        self.latest = record
        self.stock += record.quantity
        if record.photo_ref:
            self.photo_ref = record.photo_ref

    def freeze(self) -> Material:
        return Material(
            category=self.latest.category,
            serial=self.latest.serial,
            name=self.latest.name,
            model=self.latest.model,
            spec=self.latest.spec,
            unit=self.latest.unit,
            stock=self.stock,
            photo_ref=self.photo_ref,
        )
