"""
Display-name resolution.

Names are kept in a two-column users table (userId, displayName) cached the same
way as the inventory; unknown users are looked up through the gateway once and
then appended to the table.
"""

import logging
from typing import Dict, Optional, Protocol

from stockline.cache import MemoryCache
from stockline.config import Config
from stockline.errors import CollaboratorFailure
from stockline.tables import TableStore

USERS_HEADER = ["userId", "displayName"]
DEFAULT_USERS_TTL = 3600


class ProfileSource(Protocol):
    def get_profile(self, user_id: str) -> Optional[Dict]: ...


class UserDirectory:
    """Idempotent, eventually consistent ``user_id -> display name`` lookup."""

    def __init__(self, tables: TableStore, config: Config, profiles: Optional[ProfileSource] = None,
                 cache: Optional[MemoryCache] = None):
        self.tables = tables
        self.config = config
        self.profiles = profiles
        self.cache = cache or MemoryCache()
        self.logger = logging.getLogger('users')

    @property
    def table(self) -> str:
        return self.config.get("SHEET_NAME_USERS", "Users")

    @property
    def cache_key(self) -> str:
        return self.config.get("CACHE_KEY_USERS", "users_map")

    def _users_map(self) -> Dict[str, str]:
        cached = self.cache.get(self.cache_key)
        if cached is not None:
            return cached

        generation = self.cache.generation(self.cache_key)
        rows = self.tables.read_all_rows(self.table)
        if not rows:
            self.logger.info(f"Users table '{self.table}' is empty, writing header")
            self.tables.append_row(self.table, USERS_HEADER)
            return {}

        users = {str(row[0]): str(row[1]) for row in rows[1:] if len(row) >= 2 and row[0]}
        ttl = self.config.get_int("CACHE_EXPIRATION_USERS", DEFAULT_USERS_TTL)
        self.cache.put_if_generation(self.cache_key, users, ttl, generation)
        return users

    def display_name(self, user_id: str) -> str:
        """
        Resolve a user's display name.

        Args:
            user_id: Gateway user id

        Returns:
            str: Display name, or DEFAULT_UNKNOWN_USER if it cannot be resolved
        """
        default_name = self.config.get("DEFAULT_UNKNOWN_USER", "Unknown user")
        try:
            users = self._users_map()
        except CollaboratorFailure as e:
            self.logger.error(f"Users table unavailable: {e.as_dict()}")
            users = {}

        if user_id in users:
            return users[user_id]

        if self.profiles is None:
            return default_name

        self.logger.info(f"New user {user_id}, calling profile API")
        profile = self.profiles.get_profile(user_id)
        if not profile or not profile.get("displayName"):
            self.logger.error(f"Profile lookup failed for {user_id}")
            return default_name

        name = profile["displayName"]
        try:
            self.tables.append_row(self.table, [user_id, name])
            self.logger.info(f"User {name} saved to '{self.table}'")
        except CollaboratorFailure as e:
            self.logger.error(f"Could not save user {user_id}: {e.as_dict()}")
        finally:
            self.cache.remove(self.cache_key)
        return name
