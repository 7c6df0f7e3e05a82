"""Query flow: search by name or serial, list everything, or show my records."""

from typing import Optional

from stockline.errors import ValidationError
from stockline.events import InboundEvent
from stockline.flows.base import FlowHandler, FlowResult
from stockline.messages import Message, inventory_listing, search_results, user_records
from stockline.sessions import Flow, FlowState, Session

BY_NAME = "by_name"
BY_SERIAL = "by_serial"
ALL = "all"
MINE = "mine"


class QueryFlow(FlowHandler):
    flow = Flow.QUERY

    def start(self, actor: str) -> FlowResult:
        return FlowResult.goto(FlowState.QUERY_AWAITING_TYPE, None, self._type_prompt())

    def _type_prompt(self) -> Message:
        return self.prompt("PROMPT_QUERY_TYPE", [
            (self.label("LABEL_QUERY_BY_NAME", "Search by name"), f"query_type={BY_NAME}"),
            (self.label("LABEL_QUERY_BY_SERIAL", "Search by serial"), f"query_type={BY_SERIAL}"),
            (self.label("LABEL_QUERY_ALL", "All inventory"), f"query_type={ALL}"),
            (self.label("LABEL_QUERY_MINE", "My records"), f"query_type={MINE}"),
        ])

    def handle(self, event: InboundEvent, session: Optional[Session], actor: str) -> FlowResult:
        query_type = event.param("query_type") if event.is_postback else ""

        # A type button is honored even after the session was cleared
        if query_type:
            return self._choose_type(query_type, session, actor)
        if session is None:
            return FlowResult.end()

        if session.state is FlowState.QUERY_AWAITING_TYPE:
            return FlowResult.stay(session, self._type_prompt())

        if not event.is_message or not event.text:
            prompt_key = ("PROMPT_QUERY_BY_NAME" if session.state is FlowState.QUERY_AWAITING_NAME
                          else "PROMPT_QUERY_BY_SERIAL")
            return FlowResult.stay(session, self.prompt(prompt_key))

        if session.state is FlowState.QUERY_AWAITING_NAME:
            matches = self.ledger.search_materials(event.text)
            self.logger.info(f"Name search '{event.text}' by {actor}: {len(matches)} match(es)")
            return FlowResult.end(search_results(matches, self.config))

        material = self.ledger.find_material(event.text)
        self.logger.info(f"Serial search '{event.text}' by {actor}: {'hit' if material else 'miss'}")
        return FlowResult.end(search_results([material] if material else [], self.config))

    def _choose_type(self, query_type: str, session: Optional[Session], actor: str) -> FlowResult:
        if query_type == BY_NAME:
            return FlowResult.goto(FlowState.QUERY_AWAITING_NAME, None, self.prompt("PROMPT_QUERY_BY_NAME"))
        if query_type == BY_SERIAL:
            return FlowResult.goto(FlowState.QUERY_AWAITING_SERIAL, None, self.prompt("PROMPT_QUERY_BY_SERIAL"))
        if query_type == ALL:
            return FlowResult.end(inventory_listing(self.ledger.all_materials(), self.config))
        if query_type == MINE:
            return FlowResult.end(self.my_records(actor))

        error = ValidationError("Unknown query type", raw_input=query_type, user=actor)
        if session is None:
            self.logger.info(f"Ignoring stale query button: {error.as_dict()}")
            return FlowResult.end()
        return self.reject(session, error, self._type_prompt())

    def my_records(self, actor: str) -> Message:
        """Latest records by the actor as cards with edit/delete buttons."""
        records = self.ledger.records_by_actor(actor)
        return user_records(records, self.ledger.materialized_inventory(), self.config)
