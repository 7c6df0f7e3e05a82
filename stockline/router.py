"""
Dialogue router.

Resolves every inbound event to at most one flow handler:

1. ``action=<name>`` postback: drop any session and start that action
2. an active session: its flow handles the event
3. a postback whose leading token names a flow (``stock_select...``): that flow's
   entry point, with no session
4. anything else is ignored

The handler's FlowResult is persisted under the per-user session lock.
"""

import logging
from typing import Dict, List

from stockline.config import Config
from stockline.events import InboundEvent
from stockline.flows import AddFlow, DeleteFlow, EditFlow, FlowHandler, FlowResult, QueryFlow, StockFlow
from stockline.ledger import LedgerStore
from stockline.messages import Message, text
from stockline.models import Direction
from stockline.sessions import Flow, SessionStore


class DialogueRouter:
    """Single dispatcher in front of the five flows."""

    def __init__(self, ledger: LedgerStore, sessions: SessionStore, config: Config):
        self.ledger = ledger
        self.sessions = sessions
        self.config = config
        self.logger = logging.getLogger('router')

        self.query = QueryFlow(ledger, config)
        self.add = AddFlow(ledger, config)
        self.stock = StockFlow(ledger, config)
        self.handlers: Dict[Flow, FlowHandler] = {
            Flow.QUERY: self.query,
            Flow.ADD: self.add,
            Flow.STOCK: self.stock,
            Flow.EDIT: EditFlow(ledger, config),
            Flow.DELETE: DeleteFlow(ledger, config),
        }

    def route(self, event: InboundEvent, actor: str) -> List[Message]:
        """
        Handle one event for one user.

        Args:
            event: Parsed inbound event
            actor: Display name recorded on any ledger write

        Returns:
            List[Message]: Reply payloads, empty when the event is ignored
        """
        with self.sessions.lock(event.user_id):
            session = self.sessions.get(event.user_id)
            state = session.state if session else None
            try:
                action = event.top_level_action
                if action is not None:
                    self.sessions.clear(event.user_id)
                    self.logger.info(f"User {event.user_id} ({actor}) started action '{action}'")
                    result = self.start_flow(action, actor)
                elif session is not None:
                    result = self.handlers[session.flow].handle(event, session, actor)
                elif event.is_postback and event.leading_token in self._flow_names():
                    result = self.handlers[Flow(event.leading_token)].handle(event, None, actor)
                else:
                    self.logger.debug(f"Ignoring {event.kind} from {event.user_id}: {event.raw!r}")
                    return []
            except Exception as e:
                self.logger.error(
                    f"Unhandled error for user {event.user_id} in state {state} "
                    f"on input {event.raw!r}: {e}", exc_info=True
                )
                self.sessions.clear(event.user_id)
                return [text(self.config.message("MSG_SYSTEM_ERROR"))]

            self._persist(event.user_id, result)
            return result.messages

    def _flow_names(self):
        return {flow.value for flow in Flow}

    def _persist(self, user_id: str, result: FlowResult):
        if result.terminal:
            self.sessions.clear(user_id)
        else:
            self.sessions.set(user_id, result.state, result.draft)

    def start_flow(self, action: str, actor: str) -> FlowResult:
        """Run a top-level menu action."""
        if action == "query":
            return self.query.start(actor)
        if action == "add":
            return self.add.start(actor)
        if action in (Direction.INBOUND.value, Direction.OUTBOUND.value):
            return self.stock.start(actor, Direction(action))
        if action == "edit":
            return FlowResult.end(self.query.my_records(actor))
        if action == "help":
            return FlowResult.end(text(self.config.message("MSG_HELP")))
        if action == "cancel":
            return FlowResult.end(text(self.config.message("MSG_CANCEL_CONFIRM")))

        self.logger.info(f"Unsupported action '{action}' from {actor}")
        return FlowResult.end(text(self.config.message("INFO_WIP", action=action)))
