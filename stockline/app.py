"""
Application wiring and the LINE webhook endpoint.

``InventoryBot`` owns one of each collaborator and turns webhook payloads into
replies. ``create_app`` exposes it over Flask; ``main`` builds everything from
the environment.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from stockline import __version__
from stockline.cache import MemoryCache
from stockline.config import Config
from stockline.events import OTHER, InboundEvent
from stockline.ledger import LedgerStore
from stockline.line_api import LineClient, verify_signature
from stockline.logs import setup_logging
from stockline.router import DialogueRouter
from stockline.sessions import InMemorySessionStore, SessionStore
from stockline.tables import SheetsTableStore, TableStore
from stockline.users import UserDirectory

REQUIRED_ENV_VARS = ('LINE_CHANNEL_ACCESS_TOKEN', 'SPREADSHEET_ID', 'GOOGLE_SHEETS_TOKEN')
DEFAULT_PORT = 8000


class InventoryBot:
    """
    Main application object.

    The ledger and the user directory share one process-wide cache.
    """

    def __init__(self, config: Config, tables: TableStore, line: Optional[LineClient] = None,
                 sessions: Optional[SessionStore] = None, cache: Optional[MemoryCache] = None,
                 clock=None):
        """
        Wire the collaborators together.

        Args:
            config: Resolved configuration
            tables: Store holding the ledger, users and config tables
            line: Gateway client; replies are only built, not sent, when omitted
            sessions: Session repository, in-memory by default
            cache: Shared cache, created if omitted
            clock: Optional "now" provider for ledger timestamps
        """
        self.logger = logging.getLogger('system')
        self.config = config
        self.tables = tables
        self.line = line
        self.cache = cache or MemoryCache()
        self.sessions = sessions or InMemorySessionStore()
        self.ledger = LedgerStore(tables, config, cache=self.cache, clock=clock)
        self.users = UserDirectory(tables, config, profiles=line, cache=self.cache)
        self.router = DialogueRouter(self.ledger, self.sessions, config)
        self.startup_time = datetime.now()

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Check the webhook signature; always passes when no channel secret is set."""
        secret = self.config.get("LINE_CHANNEL_SECRET")
        if not secret:
            return True
        return verify_signature(secret, body, signature or "")

    def handle_event(self, raw_event: Dict[str, Any]) -> list:
        """
        Route a single LINE event and send the reply.

        Returns:
            list: Messages produced for the event
        """
        event = InboundEvent.from_line(raw_event)
        if event.kind == OTHER or not event.user_id:
            self.logger.debug(f"Skipping unsupported event type '{raw_event.get('type')}'")
            return []

        actor = self.users.display_name(event.user_id)
        messages = self.router.route(event, actor)
        if messages and self.line is not None and event.reply_token:
            if not self.line.reply(event.reply_token, messages):
                self.logger.warning(f"Reply to {event.user_id} was not delivered")
        return messages

    def process_payload(self, body: Dict[str, Any]) -> int:
        """
        Handle every event in a webhook body.

        Never raises: the gateway must always get an acknowledgement, otherwise
        it redelivers the same events.

        Returns:
            int: Number of events handled without an unexpected error
        """
        handled = 0
        for raw_event in (body or {}).get("events", []):
            try:
                self.handle_event(raw_event)
                handled += 1
            except Exception as e:
                self.logger.error(f"Error handling webhook event {raw_event!r}: {e}", exc_info=True)
        return handled


# ===== HTTP =====

def create_app(bot: InventoryBot) -> Flask:
    app = Flask(__name__)

    @app.post("/callback")
    def callback():
        body = request.get_data()
        if not bot.verify_signature(body, request.headers.get("X-Line-Signature")):
            bot.logger.warning("Rejected webhook with invalid signature")
            return "Invalid signature", 400

        payload = request.get_json(silent=True)
        if payload is None:
            return "Invalid JSON", 400

        bot.process_payload(payload)
        return "OK", 200

    @app.get("/health")
    def health():
        return jsonify({
            "status": "ok",
            "version": __version__,
            "uptime_seconds": int((datetime.now() - bot.startup_time).total_seconds()),
        })

    return app


# ===== ENTRY POINT =====

def _validate_environment() -> bool:
    logger = logging.getLogger('system')
    missing_vars = [var for var in REQUIRED_ENV_VARS if not os.environ.get(var)]
    if missing_vars:
        logger.critical(f"Missing required environment variables: {missing_vars}")
        return False
    logger.info("Environment validation passed")
    return True


def build_bot(config: Config) -> InventoryBot:
    """Create a bot backed by Google Sheets and the LINE API."""
    tables = SheetsTableStore(config.get("SPREADSHEET_ID"), config.get("GOOGLE_SHEETS_TOKEN"))
    config.overlay_table(tables)
    line = LineClient(config.get("LINE_CHANNEL_ACCESS_TOKEN"))
    bot = InventoryBot(config, tables, line=line)
    bot.ledger.ensure_ledger()
    return bot


def main():
    """Main entry point for the application."""
    logger = setup_logging()
    try:
        config = Config.from_env()
        if not _validate_environment():
            sys.exit(1)

        logger.critical(f"Stockline inventory bot v{__version__} starting")
        bot = build_bot(config)
        if not config.get("LINE_CHANNEL_SECRET"):
            logger.warning("LINE_CHANNEL_SECRET not set - webhook signatures are not checked")

        app = create_app(bot)
        app.run(host="0.0.0.0", port=config.get_int("PORT", DEFAULT_PORT))

    except KeyboardInterrupt:
        logger.critical("Shutdown requested by user")
    except Exception as e:
        logger.critical(f"Fatal error in main: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
