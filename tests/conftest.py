"""
Pytest fixtures for stockline tests.

Everything runs against the in-memory table store with a clock that ticks one
second per call, so record timestamps are distinct and ordered.
"""

from datetime import datetime, timedelta

import pytest

from stockline.cache import MemoryCache
from stockline.config import Config
from stockline.events import InboundEvent
from stockline.ledger import LedgerStore
from stockline.models import LEDGER_HEADER
from stockline.router import DialogueRouter
from stockline.sessions import InMemorySessionStore
from stockline.tables import InMemoryTableStore

USER_ID = "U1234567890"
ACTOR = "Alice"


class TickingClock:
    """Returns 2024-03-01 09:00:00, then one second later on every call."""

    def __init__(self, start=datetime(2024, 3, 1, 9, 0, 0)):
        self.current = start

    def __call__(self):
        now = self.current
        self.current += timedelta(seconds=1)
        return now


class FakeLine:
    """Records outbound calls instead of talking to LINE."""

    def __init__(self, profiles=None):
        self.replies = []
        self.pushes = []
        self.profiles = profiles or {}
        self.profile_calls = []

    def reply(self, reply_token, messages):
        self.replies.append((reply_token, messages))
        return True

    def push(self, user_id, messages):
        self.pushes.append((user_id, messages))
        return True

    def get_profile(self, user_id):
        self.profile_calls.append(user_id)
        name = self.profiles.get(user_id)
        return {"userId": user_id, "displayName": name} if name else None


class InterleavingTables(InMemoryTableStore):
    """Runs ``during_read`` once, right after a full read has taken its snapshot."""

    def __init__(self, tables=None):
        super().__init__(tables)
        self.during_read = None

    def read_all_rows(self, table):
        rows = super().read_all_rows(table)
        action, self.during_read = self.during_read, None
        if action is not None:
            action()
        return rows


def ledger_row(category, serial, name, quantity, kind, status="Valid", unit="pcs",
               actor=ACTOR, timestamp="2024-01-01 08:00:00", model="", spec="", void_reason=""):
    """A raw ledger row in table column order."""
    return [category, serial, name, model, spec, unit, quantity, kind, status,
            void_reason, actor, timestamp, ""]


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def tables():
    return InMemoryTableStore({"Records": [list(LEDGER_HEADER)]})


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def ledger(tables, config, clock):
    return LedgerStore(tables, config, cache=MemoryCache(), clock=clock)


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def router(ledger, sessions, config):
    return DialogueRouter(ledger, sessions, config)


@pytest.fixture
def seed(tables, ledger):
    """Append raw rows to the ledger table; returns the row number of the last one."""
    def _seed(*rows):
        position = None
        for row in rows:
            position = tables.append_row("Records", row)
        ledger.invalidate_cache()
        return position
    return _seed


@pytest.fixture
def widget(seed):
    """Material T01001 'Widget' with 3 pcs in stock; returns the Created row number."""
    return seed(ledger_row("T01", "001", "Widget", 3, "Created"))


@pytest.fixture
def say(router):
    """Send text or a postback as the test user and return the reply messages."""
    def _say(text=None, postback=None, user_id=USER_ID, actor=ACTOR):
        if postback is not None:
            event = InboundEvent.postback(user_id, postback, reply_token="token")
        else:
            event = InboundEvent.message(user_id, text, reply_token="token")
        return router.route(event, actor)
    return _say


def reply_text(messages):
    """Concatenate the text of all text messages in a reply."""
    return "\n".join(m.get("text", "") for m in messages if m.get("type") == "text")


def quick_reply_data(message):
    return [item["action"]["data"] for item in message.get("quickReply", {}).get("items", [])]
