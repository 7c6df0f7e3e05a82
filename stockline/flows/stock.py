"""
Stock-movement flow (inbound and outbound).

Search results are shown as cards and the session ends there; the card buttons
(``stock_select&action=outbound&key=T01001``) re-enter the flow at the quantity
step, so a card from any earlier search still works.
"""

from dataclasses import dataclass
from typing import Optional

from stockline.errors import IntegrityViolation, NotFoundError, ValidationError
from stockline.events import InboundEvent
from stockline.flows.base import NO, YES, FlowHandler, FlowResult, parse_quantity
from stockline.messages import Message, search_results, text
from stockline.models import Direction, Material, TransactionRecord
from stockline.sessions import Flow, FlowState, Session

BY_NAME = "by_name"
BY_SERIAL = "by_serial"

ICONS = {Direction.INBOUND: "📥", Direction.OUTBOUND: "📤"}


@dataclass
class StockDraft:
    direction: Direction
    search_mode: Optional[str] = None
    key: Optional[str] = None
    name: str = ""
    unit: str = ""
    quantity: Optional[int] = None


class StockFlow(FlowHandler):
    flow = Flow.STOCK

    def start(self, actor: str, direction: Direction) -> FlowResult:
        return FlowResult.goto(FlowState.STOCK_AWAITING_SEARCH_TYPE, StockDraft(direction=direction),
                               self._search_type_prompt(direction))

    def _action_label(self, direction: Direction) -> str:
        if direction is Direction.INBOUND:
            return self.label("LABEL_INBOUND", "Inbound")
        return self.label("LABEL_OUTBOUND", "Outbound")

    def _search_type_prompt(self, direction: Direction) -> Message:
        return self.prompt("PROMPT_STOCK_SEARCH", [
            (self.label("LABEL_QUERY_BY_NAME", "Search by name"), f"stock_search_type={BY_NAME}"),
            (self.label("LABEL_QUERY_BY_SERIAL", "Search by serial"), f"stock_search_type={BY_SERIAL}"),
        ], action=self._action_label(direction))

    def _quantity_prompt(self, draft: StockDraft, stock: int) -> Message:
        return self.prompt("PROMPT_STOCK_QUANTITY", unit=draft.unit, name=draft.name,
                           action=self._action_label(draft.direction), stock=stock)

    def _confirm_prompt(self, draft: StockDraft) -> Message:
        action = self._action_label(draft.direction)
        return self.prompt(
            "PROMPT_STOCK_CONFIRM_PROMPT", self.confirm_buttons("stock_confirm", f"{action} ✔"),
            cancel=False, action=action, quantity=draft.quantity, unit=draft.unit, name=draft.name,
        )

    def _insufficient(self, draft: StockDraft, available: int) -> Message:
        return text(self.msg("MSG_STOCK_INSUFFICIENT", name=draft.name, current_stock=available, unit=draft.unit))

    # ===== TRANSITIONS =====

    def handle(self, event: InboundEvent, session: Optional[Session], actor: str) -> FlowResult:
        if event.is_postback and event.data.startswith("stock_select"):
            return self._on_select(event, actor)
        if session is None:
            return FlowResult.end()

        draft: StockDraft = session.draft
        state = session.state

        if state is FlowState.STOCK_AWAITING_SEARCH_TYPE:
            mode = event.param("stock_search_type") if event.is_postback else ""
            if mode not in (BY_NAME, BY_SERIAL):
                return FlowResult.stay(session, self._search_type_prompt(draft.direction))
            draft.search_mode = mode
            prompt_key = "PROMPT_QUERY_BY_NAME" if mode == BY_NAME else "PROMPT_QUERY_BY_SERIAL"
            return FlowResult.goto(FlowState.STOCK_AWAITING_SEARCH_INPUT, draft, self.prompt(prompt_key))

        if state is FlowState.STOCK_AWAITING_SEARCH_INPUT:
            if not event.is_message or not event.text:
                return FlowResult.stay(session, text(self.msg("ERROR_EMPTY_VALUE")))
            if draft.search_mode == BY_NAME:
                matches = self.ledger.search_materials(event.text)
            else:
                material = self.ledger.find_material(event.text)
                matches = [material] if material else []
            self.logger.info(f"{draft.direction.value} search '{event.text}' by {actor}: {len(matches)} match(es)")
            return FlowResult.end(search_results(matches, self.config))

        if state is FlowState.STOCK_AWAITING_QUANTITY:
            return self._on_quantity(event, session, draft, actor)

        return self._on_confirmation(event, session, draft, actor)

    def _on_select(self, event: InboundEvent, actor: str) -> FlowResult:
        try:
            direction = Direction(event.param("action"))
        except ValueError:
            self.logger.warning(f"Bad stock_select from {actor}: {event.raw}")
            return FlowResult.end()

        material = self.ledger.find_material(event.param("key"))
        if material is None:
            error = NotFoundError("Material not found", key=event.param("key"), user=actor)
            self.logger.info(f"Stock selection failed: {error.as_dict()}")
            return FlowResult.end(text(self.msg("MSG_QUERY_NOT_FOUND")))

        draft = self._draft_for(direction, material)
        return FlowResult.goto(FlowState.STOCK_AWAITING_QUANTITY, draft, self._quantity_prompt(draft, material.stock))

    def _draft_for(self, direction: Direction, material: Material) -> StockDraft:
        return StockDraft(direction=direction, key=material.key, name=material.name, unit=material.unit)

    def _check_sufficient(self, draft: StockDraft) -> int:
        """
        Current stock of the selected material, re-read from the ledger.

        Raises:
            NotFoundError: If the material no longer exists
            IntegrityViolation: If an outbound movement exceeds current stock
        """
        material = self.ledger.find_material(draft.key)
        if material is None:
            raise NotFoundError("Material not found", key=draft.key)
        if draft.direction is Direction.OUTBOUND and draft.quantity > material.stock:
            raise IntegrityViolation(available=material.stock, requested=draft.quantity, key=draft.key)
        return material.stock

    def _on_quantity(self, event: InboundEvent, session: Session, draft: StockDraft, actor: str) -> FlowResult:
        try:
            if not event.is_message:
                raise ValidationError("Quantity must be typed", raw_input=event.raw)
            draft.quantity = parse_quantity(event.text)
        except ValidationError as e:
            e.context.setdefault("user", actor)
            return self.reject(session, e, text(self.msg("ERROR_INVALID_QUANTITY")))

        try:
            self._check_sufficient(draft)
        except IntegrityViolation as e:
            self.logger.info(f"Outbound rejected for {actor}: {e.as_dict()}")
            return FlowResult.end(self._insufficient(draft, e.available))
        except NotFoundError as e:
            self.logger.info(f"Material vanished before quantity entry: {e.as_dict()}")
            return FlowResult.end(text(self.msg("MSG_QUERY_NOT_FOUND")))

        return FlowResult.goto(FlowState.STOCK_AWAITING_CONFIRMATION, draft, self._confirm_prompt(draft))

    def _on_confirmation(self, event: InboundEvent, session: Session, draft: StockDraft, actor: str) -> FlowResult:
        choice = self.answer(event, "stock_confirm").lower()
        if choice == NO:
            return FlowResult.end(text(self.msg("MSG_CANCEL_CONFIRM")))
        if choice != YES:
            return FlowResult.stay(session, self._confirm_prompt(draft))

        # Stock may have moved since the quantity was entered
        with self.ledger.lock:
            try:
                self._check_sufficient(draft)
            except IntegrityViolation as e:
                self.logger.warning(f"Outbound rejected at confirmation for {actor}: {e.as_dict()}")
                return FlowResult.end(self._insufficient(draft, e.available))
            except NotFoundError as e:
                self.logger.info(f"Material vanished before confirmation: {e.as_dict()}")
                return FlowResult.end(text(self.msg("MSG_QUERY_NOT_FOUND")))

            material = self.ledger.find_material(draft.key)
            record = TransactionRecord(
                category=material.category, serial=material.serial, name=material.name,
                model=material.model, spec=material.spec, unit=material.unit,
                quantity=draft.direction.signed(draft.quantity), kind=draft.direction.kind,
                actor_name=actor,
            )
            if not self.ledger.append(record):
                return FlowResult.end(text(self.msg("MSG_WRITE_FAILED")))
            new_stock = self.ledger.stock_of(draft.key)

        self.logger.info(f"{actor} recorded {draft.direction.value} {draft.quantity} {draft.unit} "
                         f"of {draft.key}, stock now {new_stock}")
        return FlowResult.end(text(self.msg(
            "MSG_STOCK_SUCCESS", icon=ICONS[draft.direction], action=self._action_label(draft.direction),
            name=material.name, new_stock=new_stock, unit=material.unit,
        )))
