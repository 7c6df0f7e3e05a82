"""
Configuration for the inventory bot.

Values are resolved in three layers, later layers winning:

1. ``DEFAULT_CONFIG`` below (table names, cache settings, labels, message text)
2. Environment variables, after loading a ``.env`` file with python-dotenv
3. The optional key/value ``Config`` table in the spreadsheet, so operators can
   reword messages without a deploy

Message templates use ``{placeholder}`` substitution and may contain a literal
``\\n`` (as typed into a spreadsheet cell) which is rendered as a newline.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from stockline.errors import CollaboratorFailure

logger = logging.getLogger('system')

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

# ===== DEFAULTS =====

DEFAULT_CONFIG: Dict[str, str] = {
    # Tables
    "SHEET_NAME_RECORDS": "Records",
    "SHEET_NAME_USERS": "Users",
    "SHEET_NAME_CONFIG": "Config",

    # Caching (seconds)
    "CACHE_KEY_INVENTORY": "inventory_map",
    "CACHE_EXPIRATION_INVENTORY": "300",
    "CACHE_KEY_USERS": "users_map",
    "CACHE_EXPIRATION_USERS": "3600",

    # Business settings
    "RECORDS_FETCH_LIMIT": "5",
    "TIMEZONE": "Asia/Taipei",
    "DEFAULT_DELETE_REASON": "data error",
    "DEFAULT_UNKNOWN_USER": "Unknown user",
    "DEFAULT_IMAGE_URL": "https://via.placeholder.com/500x300.png?text=No+Image",
    "MAX_CAROUSEL_ITEMS": "12",
    "QR_CATEGORIES": "T01:Tools,E01:Electrical,C01:Consumables",
    "QR_UNITS": "pcs,box,set,roll,m",
    "SKIP_KEYWORDS": "skip,-,none",

    # Button labels
    "LABEL_QUERY_BY_NAME": "Search by name",
    "LABEL_QUERY_BY_SERIAL": "Search by serial",
    "LABEL_QUERY_ALL": "All inventory",
    "LABEL_QUERY_MINE": "My records",
    "LABEL_CANCEL": "Cancel",
    "LABEL_CONFIRM": "Confirm",
    "LABEL_SKIP": "Skip",
    "LABEL_MANUAL_UNIT": "Type a unit",
    "LABEL_INBOUND": "Inbound",
    "LABEL_OUTBOUND": "Outbound",
    "LABEL_EDIT_NAME": "Edit name",
    "LABEL_EDIT_MODEL": "Edit model",
    "LABEL_EDIT_SPEC": "Edit spec",
    "LABEL_EDIT_UNIT": "Edit unit",
    "LABEL_EDIT_QUANTITY": "Edit quantity",
    "LABEL_EDIT_TYPE": "Edit type",
    "LABEL_FINISH_EDIT": "✅ Save changes",
    "LABEL_EDIT_RECORD": "Edit record",
    "LABEL_EDIT_MOVEMENT": "Edit qty/type",
    "LABEL_DELETE": "Delete",
    "LABEL_CONFIRM_DELETE": "⚠️ Delete",

    # Query flow
    "PROMPT_QUERY_TYPE": "🔍 How would you like to search?",
    "PROMPT_QUERY_BY_NAME": "Please type the item name (part of the name is fine):",
    "PROMPT_QUERY_BY_SERIAL": "Please type the item serial, for example T01001:",
    "MSG_QUERY_NOT_FOUND": "🔍 No matching items found.",
    "INFO_TOO_MANY_RESULTS_HEADER": "Found {count} items:\\n",
    "TEMPLATE_ALL_INVENTORY_ITEM": "\\n[{id}] {name} ({model} / {spec}): {stock} {unit}",
    "INFO_NO_RECORDS": "You have no records yet.",
    "ALT_SEARCH_RESULTS": "Found {count} matching items",
    "ALT_USER_RECORDS": "Your latest {count} records",
    "LABEL_VOID_RECORD": "⚠️ This record has been voided",

    # Add flow
    "PROMPT_ADD_CATEGORY": "📦 New item\\nChoose a category:",
    "ERROR_INVALID_CATEGORY": "❌ Unknown category. Please use one of the buttons.",
    "PROMPT_ADD_UNIT": "Choose the unit for this item:",
    "PROMPT_MANUAL_UNIT": "Please type the unit:",
    "PROMPT_ADD_NAME": "Please type the item name:",
    "PROMPT_ADD_MODEL": "Model? (type skip if there is none)",
    "PROMPT_ADD_SPEC": "Spec? (type skip if there is none)",
    "PROMPT_ADD_QUANTITY": "Initial quantity in {unit}?",
    "PROMPT_ADD_CONFIRM": "{warning}Please confirm the new item:\\nCategory: {category}\\nName: {name}\\nModel: {model}\\nSpec: {spec}\\nQuantity: {quantity} {unit}",
    "WARN_ADD_DUPLICATE": "⚠️ An item with the same name, model and spec already exists.\\n\\n",
    "MSG_ADD_SUCCESS": "✅ Item added\\n[{id}] {name}\\nStock: {stock} {unit}",
    "ERROR_EMPTY_VALUE": "❌ This field cannot be empty. Please try again.",

    # Stock flow
    "PROMPT_STOCK_SEARCH": "{action}: how would you like to find the item?",
    "PROMPT_STOCK_QUANTITY": "How many {unit} of {name} for {action}? (current stock: {stock} {unit})",
    "PROMPT_STOCK_CONFIRM_PROMPT": "Confirm {action} of {quantity} {unit} {name}?",
    "MSG_STOCK_INSUFFICIENT": "⚠️ Not enough stock for {name}. Current stock: {current_stock} {unit}.",
    "MSG_STOCK_SUCCESS": "{icon} {action} recorded for {name}\\nNew stock: {new_stock} {unit}",
    "ERROR_INVALID_QUANTITY": "❌ Please enter a positive whole number.",

    # Edit and delete flows
    "PROMPT_NEW_ITEM_CHOICE": "{leading}Name: {name}\\nModel: {model}\\nSpec: {spec}\\nUnit: {unit}\\nQuantity: {quantity}\\n\\nWhat would you like to change?",
    "PROMPT_EDIT_STOCK_CHOICE": "{leading}{name}\\nType: {type}\\nQuantity: {quantity}\\n\\nWhat would you like to change?",
    "PROMPT_EDIT_NEW_VALUE": "Please type the new {field}:",
    "PROMPT_EDIT_SELECT_FIELD": "Choose the new {field}:",
    "PROMPT_EDIT_TYPE": "Choose the new record type:",
    "MSG_EDIT_FIELD_UPDATED": "{field} updated.\\n\\n",
    "MSG_EDIT_UPDATED": "Updated.\\n",
    "REASON_EDIT_FIELDS": "Corrected fields: {fields}",
    "REASON_EDIT_UNCHANGED": "Edited by user (no content changed)",
    "REASON_EDIT_VOID": "modified by {actor}",
    "MSG_EDIT_SUCCESS_MODIFY": "✅ Record updated. The previous entry is kept as void.",
    "MSG_RECORD_NOT_FOUND": "🔍 That record no longer exists or has already been voided.",
    "PROMPT_DELETE_CONFIRM": "Delete this {type} record of {name}?",
    "MSG_DELETE_SUCCESS": "🗑️ Record deleted.",

    # General
    "MSG_HELP": "📋 Use the menu below to query stock, add items, record inbound/outbound movements or edit your records.",
    "MSG_CANCEL_CONFIRM": "OK, cancelled.",
    "MSG_WRITE_FAILED": "⚠️ Could not save to the inventory sheet. Please try again later.",
    "MSG_SYSTEM_ERROR": "⚠️ Something went wrong. Please start again from the menu.",
    "INFO_WIP": "🚧 '{action}' is not available yet.",
}

# Keys that only ever come from the environment
CREDENTIAL_KEYS = (
    "LINE_CHANNEL_ACCESS_TOKEN",
    "LINE_CHANNEL_SECRET",
    "SPREADSHEET_ID",
    "GOOGLE_SHEETS_TOKEN",
    "PORT",
)


class Config:
    """
    Key/value configuration lookup.

    ``get`` returns ``None`` for unknown keys so callers can apply their own
    fallbacks, mirroring how the bot treats an operator-edited config table.
    """

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, str] = dict(DEFAULT_CONFIG)
        for key, value in (values or {}).items():
            self._values[key] = str(value)

    @classmethod
    def from_env(cls, env_file: str = ".env") -> "Config":
        """
        Build configuration from defaults plus environment variables.

        Args:
            env_file: Optional dotenv file loaded before reading the environment

        Returns:
            Config: Resolved configuration
        """
        if os.path.exists(env_file):
            load_dotenv(env_file)
            logger.info(f"Loaded environment variables from {env_file}")
        else:
            logger.info(f"No {env_file} file found - using system environment variables")

        overrides = {}
        for key in list(DEFAULT_CONFIG) + list(CREDENTIAL_KEYS):
            if key in os.environ:
                overrides[key] = os.environ[key]
        return cls(overrides)

    def overlay_table(self, tables, table: Optional[str] = None) -> int:
        """
        Overlay values from a two-column key/value table (header row skipped).

        Args:
            tables: TableStore holding the config table
            table: Table name, defaults to SHEET_NAME_CONFIG

        Returns:
            int: Number of keys loaded (0 when the table is unreachable)
        """
        table = table or self.get("SHEET_NAME_CONFIG")
        try:
            rows = tables.read_all_rows(table)
        except CollaboratorFailure as e:
            logger.error(f"Config table '{table}' unavailable, keeping defaults: {e}")
            return 0

        loaded = 0
        for row in rows[1:]:
            if len(row) < 2 or not row[0]:
                continue
            self._values[str(row[0]).strip()] = str(row[1])
            loaded += 1
        logger.info(f"Loaded {loaded} config values from table '{table}'")
        return loaded

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._values.get(key)
        if value is None or value == "":
            return default
        return value

    def get_int(self, key: str, default: int) -> int:
        """Integer lookup; unset, empty or non-numeric values fall back to default."""
        value = self.get(key)
        try:
            parsed = int(str(value).strip())
        except (TypeError, ValueError):
            return default
        return parsed if parsed > 0 else default

    def get_list(self, key: str) -> List[str]:
        """Comma-separated lookup with blanks removed."""
        raw = self.get(key, "")
        return [part.strip() for part in raw.split(",") if part.strip()]

    def message(self, key: str, **replacements: Any) -> str:
        """
        Render a message template.

        Args:
            key: Template key
            **replacements: Values for ``{placeholder}`` fields

        Returns:
            str: Rendered text, or a visible marker when the key is missing
        """
        template = self.get(key)
        if template is None:
            logger.warning(f"Missing config message: {key}")
            return f"[missing config: {key}]"
        # Single pass: substituted values are not rescanned
        return PLACEHOLDER_PATTERN.sub(
            lambda m: str(replacements[m.group(1)]) if m.group(1) in replacements else m.group(0),
            template.replace("\\n", "\n"),
        )

    def __contains__(self, key: str) -> bool:
        return key in self._values
