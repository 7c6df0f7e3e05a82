"""Delete flow: void a record after confirmation."""

from dataclasses import dataclass
from typing import Optional

from stockline.errors import NotFoundError
from stockline.events import InboundEvent
from stockline.flows.base import NO, YES, FlowHandler, FlowResult
from stockline.messages import Message, text
from stockline.sessions import Flow, FlowState, Session


@dataclass
class DeleteDraft:
    row: int
    kind: str
    name: str


class DeleteFlow(FlowHandler):
    flow = Flow.DELETE

    def _confirm_prompt(self, draft: DeleteDraft) -> Message:
        return self.prompt("PROMPT_DELETE_CONFIRM",
                           self.confirm_buttons("delete_confirm", self.label("LABEL_CONFIRM_DELETE", "Delete")),
                           cancel=False, type=draft.kind, name=draft.name)

    def handle(self, event: InboundEvent, session: Optional[Session], actor: str) -> FlowResult:
        if event.is_postback and event.data.startswith("delete_record"):
            return self._on_start(event, actor)
        if session is None:
            return FlowResult.end()

        draft: DeleteDraft = session.draft
        choice = self.answer(event, "delete_confirm").lower()
        if choice == NO:
            return FlowResult.end(text(self.msg("MSG_CANCEL_CONFIRM")))
        if choice != YES:
            return FlowResult.stay(session, self._confirm_prompt(draft))

        # No stock check: voiding simply removes the row's contribution
        reason = self.config.get("DEFAULT_DELETE_REASON", "data error")
        try:
            voided = self.ledger.void(draft.row, reason, actor)
        except NotFoundError as e:
            self.logger.info(f"Delete of row {draft.row} by {actor} failed: {e.as_dict()}")
            return FlowResult.end(text(self.msg("MSG_RECORD_NOT_FOUND")))
        if not voided:
            return FlowResult.end(text(self.msg("MSG_WRITE_FAILED")))

        self.logger.info(f"{actor} deleted row {draft.row} ({draft.kind} {draft.name})")
        return FlowResult.end(text(self.msg("MSG_DELETE_SUCCESS")))

    def _on_start(self, event: InboundEvent, actor: str) -> FlowResult:
        try:
            record = self.ledger.get_record(int(event.param("row")))
            if not record.is_valid:
                raise NotFoundError("Record already void", row=record.row)
        except ValueError:
            self.logger.warning(f"Bad delete_record from {actor}: {event.raw}")
            return FlowResult.end(text(self.msg("MSG_RECORD_NOT_FOUND")))
        except NotFoundError as e:
            self.logger.info(f"Delete entry refused for {actor}: {e.as_dict()}")
            return FlowResult.end(text(self.msg("MSG_RECORD_NOT_FOUND")))

        draft = DeleteDraft(row=record.row, kind=record.kind.value, name=record.name)
        return FlowResult.goto(FlowState.DELETE_AWAITING_CONFIRMATION, draft, self._confirm_prompt(draft))
