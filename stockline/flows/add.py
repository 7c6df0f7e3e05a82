"""
Add flow: register a new material.

Fields are collected one per turn into an AddDraft. The draft is checked for
completeness only when the user confirms; the serial is allocated at that point.
"""

from dataclasses import dataclass
from typing import List, Optional

from stockline.errors import CollaboratorFailure, ValidationError
from stockline.events import InboundEvent
from stockline.flows.base import MANUAL_UNIT, NO, SKIP, YES, FlowHandler, FlowResult, parse_quantity
from stockline.ledger import created_record
from stockline.messages import Message, text
from stockline.models import composite_key
from stockline.sessions import Flow, FlowState, Session


@dataclass
class AddDraft:
    category: Optional[str] = None
    unit: Optional[str] = None
    name: Optional[str] = None
    model: str = ""
    spec: str = ""
    quantity: Optional[int] = None

    def missing_fields(self) -> List[str]:
        return [f for f in ("category", "unit", "name", "quantity") if getattr(self, f) in (None, "")]


class AddFlow(FlowHandler):
    flow = Flow.ADD

    def start(self, actor: str) -> FlowResult:
        return FlowResult.goto(FlowState.ADD_AWAITING_CATEGORY, AddDraft(), self._category_prompt())

    # ===== PROMPTS =====

    def _category_prompt(self) -> Message:
        buttons = [(f"{code} {name}", f"add_category={code}") for code, name in self.categories()]
        return self.prompt("PROMPT_ADD_CATEGORY", buttons)

    def _skip_prompt(self, key: str) -> Message:
        return self.prompt(key, [(self.label("LABEL_SKIP", "Skip"), f"add_field={SKIP}")])

    def _confirm_prompt(self, draft: AddDraft) -> Message:
        duplicate = self.ledger.material_exists(draft.name, draft.model, draft.spec)
        warning = self.msg("WARN_ADD_DUPLICATE") if duplicate else ""
        return self.prompt(
            "PROMPT_ADD_CONFIRM", self.confirm_buttons("add_confirm"), cancel=False,
            warning=warning, category=draft.category, name=draft.name,
            model=draft.model or "-", spec=draft.spec or "-",
            quantity=draft.quantity, unit=draft.unit,
        )

    def _reprompt(self, session: Session) -> Message:
        draft: AddDraft = session.draft
        state = session.state
        if state is FlowState.ADD_AWAITING_CATEGORY:
            return self._category_prompt()
        if state is FlowState.ADD_AWAITING_UNIT_CHOICE:
            return self.prompt("PROMPT_ADD_UNIT", self.unit_buttons("add_unit"))
        if state is FlowState.ADD_AWAITING_MANUAL_UNIT:
            return self.prompt("PROMPT_MANUAL_UNIT")
        if state is FlowState.ADD_AWAITING_NAME:
            return self.prompt("PROMPT_ADD_NAME")
        if state is FlowState.ADD_AWAITING_MODEL:
            return self._skip_prompt("PROMPT_ADD_MODEL")
        if state is FlowState.ADD_AWAITING_SPEC:
            return self._skip_prompt("PROMPT_ADD_SPEC")
        if state is FlowState.ADD_AWAITING_QUANTITY:
            return self.prompt("PROMPT_ADD_QUANTITY", unit=draft.unit)
        return self._confirm_prompt(draft)

    # ===== TRANSITIONS =====

    def handle(self, event: InboundEvent, session: Optional[Session], actor: str) -> FlowResult:
        if session is None:
            # Stale add_* button from a finished conversation
            return FlowResult.end()

        draft: AddDraft = session.draft or AddDraft()
        state = session.state

        try:
            if state is FlowState.ADD_AWAITING_CATEGORY:
                return self._on_category(event, draft)
            if state is FlowState.ADD_AWAITING_UNIT_CHOICE:
                return self._on_unit_choice(event, draft)
            if state is FlowState.ADD_AWAITING_MANUAL_UNIT:
                draft.unit = self._required_text(event)
                return FlowResult.goto(FlowState.ADD_AWAITING_NAME, draft, self.prompt("PROMPT_ADD_NAME"))
            if state is FlowState.ADD_AWAITING_NAME:
                draft.name = self._required_text(event)
                return FlowResult.goto(FlowState.ADD_AWAITING_MODEL, draft, self._skip_prompt("PROMPT_ADD_MODEL"))
            if state is FlowState.ADD_AWAITING_MODEL:
                draft.model = self._optional_text(event)
                return FlowResult.goto(FlowState.ADD_AWAITING_SPEC, draft, self._skip_prompt("PROMPT_ADD_SPEC"))
            if state is FlowState.ADD_AWAITING_SPEC:
                draft.spec = self._optional_text(event)
                return FlowResult.goto(FlowState.ADD_AWAITING_QUANTITY, draft,
                                       self.prompt("PROMPT_ADD_QUANTITY", unit=draft.unit))
            if state is FlowState.ADD_AWAITING_QUANTITY:
                if not event.is_message:
                    raise ValidationError("Quantity must be typed", raw_input=event.raw)
                draft.quantity = parse_quantity(event.text)
                return FlowResult.goto(FlowState.ADD_AWAITING_CONFIRMATION, draft, self._confirm_prompt(draft))
            return self._on_confirmation(event, session, draft, actor)

        except ValidationError as e:
            e.context.setdefault("user", actor)
            error_key = "ERROR_INVALID_QUANTITY" if state is FlowState.ADD_AWAITING_QUANTITY else "ERROR_EMPTY_VALUE"
            if state is FlowState.ADD_AWAITING_CATEGORY:
                error_key = "ERROR_INVALID_CATEGORY"
            return self.reject(session, e, text(self.msg(error_key)), self._reprompt(session))

    def _on_category(self, event: InboundEvent, draft: AddDraft) -> FlowResult:
        chosen = self.answer(event, "add_category").upper()
        if chosen not in {code for code, _ in self.categories()}:
            raise ValidationError("Unknown category", raw_input=event.raw)
        draft.category = chosen
        return FlowResult.goto(FlowState.ADD_AWAITING_UNIT_CHOICE, draft,
                               self.prompt("PROMPT_ADD_UNIT", self.unit_buttons("add_unit")))

    def _on_unit_choice(self, event: InboundEvent, draft: AddDraft) -> FlowResult:
        chosen = self.answer(event, "add_unit")
        if chosen == MANUAL_UNIT:
            return FlowResult.goto(FlowState.ADD_AWAITING_MANUAL_UNIT, draft, self.prompt("PROMPT_MANUAL_UNIT"))
        if not chosen:
            raise ValidationError("Empty unit", raw_input=event.raw)
        draft.unit = chosen
        return FlowResult.goto(FlowState.ADD_AWAITING_NAME, draft, self.prompt("PROMPT_ADD_NAME"))

    def _required_text(self, event: InboundEvent) -> str:
        if not event.is_message or not event.text:
            raise ValidationError("A value is required", raw_input=event.raw)
        return event.text

    def _optional_text(self, event: InboundEvent) -> str:
        if event.is_postback:
            if event.param("add_field") == SKIP:
                return ""
            raise ValidationError("Unexpected button", raw_input=event.raw)
        if not event.text or self.is_skip(event.text):
            return ""
        return event.text

    def _on_confirmation(self, event: InboundEvent, session: Session, draft: AddDraft, actor: str) -> FlowResult:
        choice = self.answer(event, "add_confirm").lower()
        if choice in (NO, self.label("LABEL_CANCEL", "Cancel").lower()):
            self.logger.info(f"Add of '{draft.name}' cancelled by {actor}")
            return FlowResult.end(text(self.msg("MSG_CANCEL_CONFIRM")))
        if choice not in (YES, self.label("LABEL_CONFIRM", "Confirm").lower()):
            return FlowResult.stay(session, self._confirm_prompt(draft))

        missing = draft.missing_fields()
        if missing:
            error = ValidationError("Incomplete item", missing=", ".join(missing), user=actor)
            self.logger.error(f"Add draft cannot be finalized: {error.as_dict()}")
            return FlowResult.end(text(self.msg("MSG_SYSTEM_ERROR")))

        with self.ledger.lock:
            try:
                serial = self.ledger.next_serial(draft.category)
            except CollaboratorFailure as e:
                self.logger.error(f"Serial allocation failed for {draft.category}: {e.as_dict()}")
                return FlowResult.end(text(self.msg("MSG_WRITE_FAILED")))

            record = created_record(
                category=draft.category, serial=serial, name=draft.name, unit=draft.unit,
                quantity=draft.quantity, actor_name=actor, model=draft.model, spec=draft.spec,
            )
            if not self.ledger.append(record):
                return FlowResult.end(text(self.msg("MSG_WRITE_FAILED")))

        key = composite_key(draft.category, serial)
        stock = self.ledger.stock_of(key) or draft.quantity
        self.logger.info(f"{actor} added {key} '{draft.name}' with {draft.quantity} {draft.unit}")
        return FlowResult.end(text(self.msg("MSG_ADD_SUCCESS", id=key, name=draft.name,
                                            stock=stock, unit=draft.unit)))
