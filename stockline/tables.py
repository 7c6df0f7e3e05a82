"""
Tabular store collaborators.

The ledger and the user directory only need an ordered-rows table with
read-all / append-row / write-cell operations. Rows and columns are 1-based
and row 1 is the header, matching spreadsheet addressing.
"""

import copy
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import quote

import requests

from stockline.errors import CollaboratorFailure

Row = List[Any]


class TableStore(Protocol):
    """Interface the core consumes. Implementations raise CollaboratorFailure."""

    def read_all_rows(self, table: str) -> List[Row]: ...

    def get_row(self, table: str, row: int) -> Optional[Row]: ...

    def append_row(self, table: str, values: Sequence[Any]) -> Optional[int]: ...

    def write_cell(self, table: str, row: int, column: int, value: Any) -> None: ...


def column_letter(column: int) -> str:
    """Convert a 1-based column number to A1 notation (1 -> A, 27 -> AA)."""
    letters = ""
    while column > 0:
        column, remainder = divmod(column - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


# ===== IN-MEMORY STORE =====

class InMemoryTableStore:
    """
    Process-local table store.

    Used for tests and local runs without a spreadsheet. Reads hand out copies so
    callers can never mutate stored rows behind the store's back.
    """

    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None):
        self._tables: Dict[str, List[Row]] = copy.deepcopy(tables or {})
        self._lock = threading.Lock()

    def read_all_rows(self, table: str) -> List[Row]:
        with self._lock:
            return copy.deepcopy(self._tables.get(table, []))

    def get_row(self, table: str, row: int) -> Optional[Row]:
        with self._lock:
            rows = self._tables.get(table, [])
            if row < 1 or row > len(rows):
                return None
            return list(rows[row - 1])

    def append_row(self, table: str, values: Sequence[Any]) -> int:
        with self._lock:
            rows = self._tables.setdefault(table, [])
            rows.append(list(values))
            return len(rows)

    def write_cell(self, table: str, row: int, column: int, value: Any) -> None:
        with self._lock:
            rows = self._tables.get(table, [])
            if row < 1 or row > len(rows):
                raise CollaboratorFailure(f"Row {row} out of range", table=table, row=row)
            cells = rows[row - 1]
            if len(cells) < column:
                cells.extend([""] * (column - len(cells)))
            cells[column - 1] = value


# ===== GOOGLE SHEETS STORE =====

class SheetsTableStore:
    """
    Google Sheets (API v4) table store.

    Each sheet tab is a table. Values are written with ``RAW`` input so serials
    such as ``"001"`` stay text.
    """

    def __init__(self, spreadsheet_id: str, access_token: str,
                 base_url: str = "https://sheets.googleapis.com/v4", timeout: int = 30):
        """
        Initialize the Sheets client.

        Args:
            spreadsheet_id: Target spreadsheet ID
            access_token: OAuth bearer token with spreadsheets scope
            base_url: API root
            timeout: Per-request timeout in seconds
        """
        self.spreadsheet_id = spreadsheet_id
        self.base_url = base_url
        self.timeout = timeout
        self.logger = logging.getLogger('sheets')

        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json',
        })

        self.logger.info(f"Sheets store initialized for spreadsheet {spreadsheet_id[:8]}...")

    def _values_url(self, a1_range: str) -> str:
        return f"{self.base_url}/spreadsheets/{self.spreadsheet_id}/values/{quote(a1_range, safe='!:')}"

    def _make_request(self, http_method: str, url: str, params: Dict = None,
                      data: Dict = None) -> Optional[Dict]:
        """
        Make HTTP request to the Sheets API with error handling and logging.

        Args:
            http_method: 'GET' | 'POST' | 'PUT'
            url: Full request URL
            params: Query string parameters
            data: JSON body (for non-GET)

        Returns:
            Optional[Dict]: Parsed JSON on success, else None
        """
        try:
            start_time = time.time()
            if http_method.upper() == "GET":
                resp = self.session.get(url, params=params, timeout=self.timeout)
            else:
                resp = self.session.request(http_method.upper(), url, params=params,
                                            json=data or {}, timeout=self.timeout)
            duration_ms = (time.time() - start_time) * 1000

            if 200 <= resp.status_code < 300:
                self.logger.debug(f"Sheets {http_method} {url} OK in {duration_ms:.2f}ms")
                return resp.json() if resp.content else {}

            try:
                err = resp.json()
            except ValueError:
                err = {"message": resp.text}
            self.logger.error(f"Sheets {http_method} {url} HTTP {resp.status_code}: {err}")
            return None
        except requests.exceptions.Timeout:
            self.logger.error(f"Sheets {http_method} {url} timed out")
            return None
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Sheets {http_method} {url} network error: {e}")
            return None

    def _require(self, response: Optional[Dict], operation: str, table: str, **context) -> Dict:
        if response is None:
            raise CollaboratorFailure(f"Sheets {operation} failed", table=table, **context)
        return response

    def read_all_rows(self, table: str) -> List[Row]:
        response = self._require(
            self._make_request('GET', self._values_url(table),
                               params={'valueRenderOption': 'UNFORMATTED_VALUE'}),
            'read', table)
        return response.get('values', [])

    def get_row(self, table: str, row: int) -> Optional[Row]:
        if row < 1:
            return None
        response = self._require(
            self._make_request('GET', self._values_url(f"{table}!{row}:{row}"),
                               params={'valueRenderOption': 'UNFORMATTED_VALUE'}),
            'get_row', table, row=row)
        values = response.get('values', [])
        return list(values[0]) if values else None

    def append_row(self, table: str, values: Sequence[Any]) -> Optional[int]:
        response = self._require(
            self._make_request('POST', self._values_url(f"{table}!A1") + ":append",
                               params={'valueInputOption': 'RAW', 'insertDataOption': 'INSERT_ROWS'},
                               data={'values': [list(values)]}),
            'append', table)
        # updatedRange looks like "Records!A42:M42"
        updated = response.get('updates', {}).get('updatedRange', '')
        digits = ''.join(ch for ch in updated.split(':')[-1] if ch.isdigit())
        return int(digits) if digits else None

    def write_cell(self, table: str, row: int, column: int, value: Any) -> None:
        cell = f"{table}!{column_letter(column)}{row}"
        self._require(
            self._make_request('PUT', self._values_url(cell),
                               params={'valueInputOption': 'RAW'},
                               data={'values': [[value]]}),
            'write_cell', table, row=row, column=column)
