"""
Tests for display-name resolution.
"""

from conftest import FakeLine, InterleavingTables
from stockline.cache import MemoryCache
from stockline.config import Config
from stockline.tables import InMemoryTableStore
from stockline.users import UserDirectory


def directory(rows=None, profiles=None):
    tables = InMemoryTableStore({"Users": rows} if rows is not None else {})
    line = FakeLine(profiles)
    return UserDirectory(tables, Config(), profiles=line), tables, line


class TestUserDirectory:

    def test_known_user_from_table(self):
        users, _, line = directory([["userId", "displayName"], ["U1", "Alice"]])

        assert users.display_name("U1") == "Alice"
        assert line.profile_calls == []

    def test_table_is_cached(self):
        users, tables, _ = directory([["userId", "displayName"], ["U1", "Alice"]])
        users.display_name("U1")

        tables.write_cell("Users", 2, 2, "Renamed")

        assert users.display_name("U1") == "Alice"

    def test_new_user_fetched_and_saved(self):
        users, tables, line = directory([["userId", "displayName"]], profiles={"U2": "Bob"})

        assert users.display_name("U2") == "Bob"
        assert tables.read_all_rows("Users")[-1] == ["U2", "Bob"]

        # Second lookup comes from the table, not the API
        assert users.display_name("U2") == "Bob"
        assert line.profile_calls == ["U2"]

    def test_empty_table_gets_header(self):
        users, tables, _ = directory(profiles={"U3": "Cy"})

        assert users.display_name("U3") == "Cy"
        assert tables.read_all_rows("Users") == [["userId", "displayName"], ["U3", "Cy"]]

    def test_unknown_user_fallback(self):
        users, tables, _ = directory([["userId", "displayName"]])

        assert users.display_name("U404") == "Unknown user"
        assert len(tables.read_all_rows("Users")) == 1

    def test_no_gateway_fallback(self):
        users = UserDirectory(InMemoryTableStore(), Config())

        assert users.display_name("U1") == "Unknown user"

    def test_rebuild_overlapping_a_new_user_is_not_cached(self):
        """A user saved during another request's table read is not forgotten."""
        tables = InterleavingTables({"Users": [["userId", "displayName"], ["U1", "Alice"]]})
        cache = MemoryCache()
        line = FakeLine({"U2": "Bob"})
        reader = UserDirectory(tables, Config(), profiles=line, cache=cache)
        writer = UserDirectory(tables, Config(), profiles=line, cache=cache)
        tables.during_read = lambda: writer.display_name("U2")

        assert reader.display_name("U1") == "Alice"

        assert reader.display_name("U2") == "Bob"
        assert line.profile_calls == ["U2"]
        assert tables.read_all_rows("Users").count(["U2", "Bob"]) == 1
