"""
Per-user conversational state.

A session is the pair (FlowState, draft). FlowState is a tagged enum naming the
owning flow and the step inside it; the draft is a per-flow dataclass that the
store treats as opaque.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Protocol

logger = logging.getLogger('sessions')


class Flow(str, Enum):
    QUERY = "query"
    ADD = "add"
    STOCK = "stock"
    EDIT = "edit"
    DELETE = "delete"


class FlowState(Enum):
    """Every step of every flow, as (flow, step)."""

    QUERY_AWAITING_TYPE = (Flow.QUERY, "awaiting_type")
    QUERY_AWAITING_NAME = (Flow.QUERY, "awaiting_name")
    QUERY_AWAITING_SERIAL = (Flow.QUERY, "awaiting_serial")

    ADD_AWAITING_CATEGORY = (Flow.ADD, "awaiting_category")
    ADD_AWAITING_UNIT_CHOICE = (Flow.ADD, "awaiting_unit_choice")
    ADD_AWAITING_MANUAL_UNIT = (Flow.ADD, "awaiting_manual_unit")
    ADD_AWAITING_NAME = (Flow.ADD, "awaiting_name")
    ADD_AWAITING_MODEL = (Flow.ADD, "awaiting_model")
    ADD_AWAITING_SPEC = (Flow.ADD, "awaiting_spec")
    ADD_AWAITING_QUANTITY = (Flow.ADD, "awaiting_quantity")
    ADD_AWAITING_CONFIRMATION = (Flow.ADD, "awaiting_confirmation")

    STOCK_AWAITING_SEARCH_TYPE = (Flow.STOCK, "awaiting_search_type")
    STOCK_AWAITING_SEARCH_INPUT = (Flow.STOCK, "awaiting_search_input")
    STOCK_AWAITING_QUANTITY = (Flow.STOCK, "awaiting_quantity")
    STOCK_AWAITING_CONFIRMATION = (Flow.STOCK, "awaiting_confirmation")

    EDIT_NEW_AWAITING_CHOICE = (Flow.EDIT, "new_awaiting_choice")
    EDIT_NEW_AWAITING_NEW_VALUE = (Flow.EDIT, "new_awaiting_new_value")
    EDIT_NEW_AWAITING_UNIT_CHOICE = (Flow.EDIT, "new_awaiting_unit_choice")
    EDIT_NEW_AWAITING_MANUAL_UNIT = (Flow.EDIT, "new_awaiting_manual_unit")
    EDIT_STOCK_AWAITING_CHOICE = (Flow.EDIT, "stock_awaiting_choice")
    EDIT_STOCK_AWAITING_QUANTITY = (Flow.EDIT, "stock_awaiting_quantity")
    EDIT_STOCK_AWAITING_TYPE = (Flow.EDIT, "stock_awaiting_type")

    DELETE_AWAITING_CONFIRMATION = (Flow.DELETE, "awaiting_confirmation")

    @property
    def flow(self) -> Flow:
        return self.value[0]

    @property
    def step(self) -> str:
        return self.value[1]

    @property
    def label(self) -> str:
        """Stable text form, e.g. ``add_awaiting_category``, for logs and persistence."""
        return f"{self.flow.value}_{self.step}"

    @classmethod
    def from_label(cls, label: str) -> "FlowState":
        for state in cls:
            if state.label == label:
                return state
        raise KeyError(label)

    def __str__(self) -> str:
        return self.label


@dataclass
class Session:
    user_id: str
    state: FlowState
    draft: Any = None
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def flow(self) -> Flow:
        return self.state.flow


class SessionStore(Protocol):
    """Injected session repository used by the router."""

    def get(self, user_id: str) -> Optional[Session]: ...

    def set(self, user_id: str, state: FlowState, draft: Any = None) -> Session: ...

    def clear(self, user_id: str) -> None: ...

    def lock(self, user_id: str): ...


class InMemorySessionStore:
    """
    Process-local session store.

    Sessions never expire here; they live until a flow clears them or the user
    starts a new top-level action. ``lock`` gives per-user mutual exclusion for
    hosts that deliver events for the same user concurrently.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._user_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(user_id)

    def set(self, user_id: str, state: FlowState, draft: Any = None) -> Session:
        session = Session(user_id=user_id, state=state, draft=draft)
        with self._lock:
            self._sessions[user_id] = session
        logger.debug(f"Session for {user_id} -> {state}")
        return session

    def clear(self, user_id: str) -> None:
        with self._lock:
            removed = self._sessions.pop(user_id, None)
        if removed:
            logger.debug(f"Session for {user_id} cleared (was {removed.state})")

    @contextmanager
    def lock(self, user_id: str) -> Iterator[None]:
        with self._lock:
            user_lock = self._user_locks.setdefault(user_id, threading.Lock())
        with user_lock:
            yield

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
