"""
Edit flow: correct a ledger record without rewriting history.

The original row is voided and a corrected copy is appended, so every edit
leaves an audit trail. Two sub-types exist:

- ``new``: correct a Created record (name, model, spec, unit, quantity)
- ``stock``: correct an Inbound/Outbound record (quantity, direction)

Entry is only through a record card button: ``edit_start&type=stock&row=12``.
"""

from dataclasses import dataclass
from typing import List, Optional

from stockline.errors import IntegrityViolation, NotFoundError, ValidationError
from stockline.events import InboundEvent
from stockline.flows.base import MANUAL_UNIT, FlowHandler, FlowResult, parse_quantity
from stockline.messages import Message, text
from stockline.models import COL_VOID_REASON, Direction, RecordKind, TransactionRecord
from stockline.sessions import Flow, FlowState, Session

EDIT_NEW = "new"
EDIT_STOCK = "stock"
FINISH = "finish"

# Field -> (attribute, label key, default label)
NEW_ITEM_FIELDS = {
    "name": ("name", "LABEL_EDIT_NAME", "Edit name"),
    "model": ("model", "LABEL_EDIT_MODEL", "Edit model"),
    "spec": ("spec", "LABEL_EDIT_SPEC", "Edit spec"),
    "unit": ("unit", "LABEL_EDIT_UNIT", "Edit unit"),
    "quantity": ("quantity", "LABEL_EDIT_QUANTITY", "Edit quantity"),
}
OPTIONAL_FIELDS = ("model", "spec")
DIFF_FIELDS = (("name", "name"), ("model", "model"), ("spec", "spec"), ("unit", "unit"),
               ("quantity", "quantity"), ("kind", "type"))


@dataclass
class EditDraft:
    """The record as loaded at entry, and the corrected copy being built."""
    edit_type: str
    original: TransactionRecord
    corrected: TransactionRecord
    field: Optional[str] = None

    @property
    def row(self) -> int:
        return self.original.row


def changed_fields(original: TransactionRecord, corrected: TransactionRecord) -> List[str]:
    """Names of the fields that differ, compared by magnitude for quantities."""
    changed = []
    for attribute, name in DIFF_FIELDS:
        before, after = getattr(original, attribute), getattr(corrected, attribute)
        if attribute == "quantity":
            before, after = abs(before), abs(after)
        if before != after:
            changed.append(name)
    return changed


def normalized_quantity(kind: RecordKind, quantity: int) -> int:
    return -abs(quantity) if kind is RecordKind.OUTBOUND else abs(quantity)


class EditFlow(FlowHandler):
    flow = Flow.EDIT

    # ===== MENUS =====

    def _menu(self, draft: EditDraft, leading: str = "") -> Message:
        finish = (self.label("LABEL_FINISH_EDIT", "Save changes"), f"edit_field={FINISH}")
        corrected = draft.corrected
        if draft.edit_type == EDIT_NEW:
            buttons = [(self.label(key, default), f"edit_field={name}")
                       for name, (_, key, default) in NEW_ITEM_FIELDS.items()]
            buttons.append(finish)
            return self.prompt("PROMPT_NEW_ITEM_CHOICE", buttons, leading=leading, name=corrected.name,
                               model=corrected.model or "-", spec=corrected.spec or "-",
                               unit=corrected.unit, quantity=corrected.magnitude)

        buttons = [
            (self.label("LABEL_EDIT_QUANTITY", "Edit quantity"), "edit_stock_choice=quantity"),
            (self.label("LABEL_EDIT_TYPE", "Edit type"), "edit_stock_choice=type"),
            (finish[0], f"edit_stock_choice={FINISH}"),
        ]
        return self.prompt("PROMPT_EDIT_STOCK_CHOICE", buttons, leading=leading, name=corrected.name,
                           type=corrected.kind.value, quantity=corrected.magnitude)

    def _choice_state(self, draft: EditDraft) -> FlowState:
        if draft.edit_type == EDIT_NEW:
            return FlowState.EDIT_NEW_AWAITING_CHOICE
        return FlowState.EDIT_STOCK_AWAITING_CHOICE

    def _back_to_menu(self, draft: EditDraft, leading: str = "") -> FlowResult:
        draft.field = None
        return FlowResult.goto(self._choice_state(draft), draft, self._menu(draft, leading))

    def _field_label(self, field_name: str) -> str:
        return field_name.replace("_", " ")

    # ===== TRANSITIONS =====

    def handle(self, event: InboundEvent, session: Optional[Session], actor: str) -> FlowResult:
        if event.is_postback and event.data.startswith("edit_start"):
            return self._on_start(event, actor)
        if session is None:
            return FlowResult.end()

        draft: EditDraft = session.draft
        state = session.state
        try:
            if state is FlowState.EDIT_NEW_AWAITING_CHOICE:
                return self._on_new_choice(event, session, draft, actor)
            if state is FlowState.EDIT_NEW_AWAITING_NEW_VALUE:
                return self._on_new_value(event, draft)
            if state is FlowState.EDIT_NEW_AWAITING_UNIT_CHOICE:
                return self._on_unit_choice(event, draft)
            if state is FlowState.EDIT_NEW_AWAITING_MANUAL_UNIT:
                draft.corrected.unit = self._required_text(event)
                return self._back_to_menu(draft, self.msg("MSG_EDIT_FIELD_UPDATED", field="unit"))
            if state is FlowState.EDIT_STOCK_AWAITING_CHOICE:
                return self._on_stock_choice(event, session, draft, actor)
            if state is FlowState.EDIT_STOCK_AWAITING_QUANTITY:
                if not event.is_message:
                    raise ValidationError("Quantity must be typed", raw_input=event.raw)
                quantity = parse_quantity(event.text)
                draft.corrected.quantity = normalized_quantity(draft.corrected.kind, quantity)
                return self._back_to_menu(draft, self.msg("MSG_EDIT_UPDATED"))
            return self._on_type(event, session, draft)

        except ValidationError as e:
            e.context.setdefault("user", actor)
            wants_quantity = state is FlowState.EDIT_STOCK_AWAITING_QUANTITY or (
                state is FlowState.EDIT_NEW_AWAITING_NEW_VALUE and draft.field == "quantity")
            error_key = "ERROR_INVALID_QUANTITY" if wants_quantity else "ERROR_EMPTY_VALUE"
            return self.reject(session, e, text(self.msg(error_key)))

    def _on_start(self, event: InboundEvent, actor: str) -> FlowResult:
        edit_type = event.param("type")
        try:
            row = int(event.param("row"))
            record = self.ledger.get_record(row)
            if not record.is_valid:
                raise NotFoundError("Record already void", row=row)
            is_created = record.kind is RecordKind.CREATED
            if edit_type not in (EDIT_NEW, EDIT_STOCK) or is_created != (edit_type == EDIT_NEW):
                raise NotFoundError("Edit type does not match record", row=row, type=edit_type)
        except ValueError:
            self.logger.warning(f"Bad edit_start from {actor}: {event.raw}")
            return FlowResult.end(text(self.msg("MSG_RECORD_NOT_FOUND")))
        except NotFoundError as e:
            e.context.setdefault("user", actor)
            self.logger.info(f"Edit entry refused: {e.as_dict()}")
            return FlowResult.end(text(self.msg("MSG_RECORD_NOT_FOUND")))

        draft = EditDraft(edit_type=edit_type, original=record, corrected=record.copy())
        self.logger.info(f"{actor} editing row {row} ({record.kind.value} {record.key})")
        return self._back_to_menu(draft)

    def _on_new_choice(self, event: InboundEvent, session: Session, draft: EditDraft, actor: str) -> FlowResult:
        choice = event.param("edit_field") if event.is_postback else ""
        if choice == FINISH:
            return self._finalize(session, draft, actor)
        if choice == "unit":
            draft.field = "unit"
            return FlowResult.goto(FlowState.EDIT_NEW_AWAITING_UNIT_CHOICE, draft,
                                   self.prompt("PROMPT_EDIT_SELECT_FIELD", self.unit_buttons("edit_unit"),
                                               field="unit"))
        if choice in NEW_ITEM_FIELDS:
            draft.field = choice
            return FlowResult.goto(FlowState.EDIT_NEW_AWAITING_NEW_VALUE, draft,
                                   self.prompt("PROMPT_EDIT_NEW_VALUE", field=self._field_label(choice)))
        return FlowResult.stay(session, self._menu(draft))

    def _on_new_value(self, event: InboundEvent, draft: EditDraft) -> FlowResult:
        field_name = draft.field
        if field_name == "quantity":
            if not event.is_message:
                raise ValidationError("Quantity must be typed", raw_input=event.raw)
            draft.corrected.quantity = parse_quantity(event.text)
        elif field_name in OPTIONAL_FIELDS:
            if not event.is_message:
                raise ValidationError("A value is required", raw_input=event.raw)
            setattr(draft.corrected, field_name, "" if self.is_skip(event.text) else event.text)
        else:
            draft.corrected.name = self._required_text(event)
        return self._back_to_menu(draft, self.msg("MSG_EDIT_FIELD_UPDATED", field=self._field_label(field_name)))

    def _on_unit_choice(self, event: InboundEvent, draft: EditDraft) -> FlowResult:
        chosen = self.answer(event, "edit_unit")
        if chosen == MANUAL_UNIT:
            return FlowResult.goto(FlowState.EDIT_NEW_AWAITING_MANUAL_UNIT, draft, self.prompt("PROMPT_MANUAL_UNIT"))
        if not chosen:
            raise ValidationError("Empty unit", raw_input=event.raw)
        draft.corrected.unit = chosen
        return self._back_to_menu(draft, self.msg("MSG_EDIT_FIELD_UPDATED", field="unit"))

    def _on_stock_choice(self, event: InboundEvent, session: Session, draft: EditDraft, actor: str) -> FlowResult:
        choice = event.param("edit_stock_choice") if event.is_postback else ""
        if choice == FINISH:
            return self._finalize(session, draft, actor)
        if choice == "quantity":
            return FlowResult.goto(FlowState.EDIT_STOCK_AWAITING_QUANTITY, draft,
                                   self.prompt("PROMPT_EDIT_NEW_VALUE", field="quantity"))
        if choice == "type":
            buttons = [(self.label("LABEL_INBOUND", "Inbound"), f"edit_type={Direction.INBOUND.value}"),
                       (self.label("LABEL_OUTBOUND", "Outbound"), f"edit_type={Direction.OUTBOUND.value}")]
            return FlowResult.goto(FlowState.EDIT_STOCK_AWAITING_TYPE, draft, self.prompt("PROMPT_EDIT_TYPE", buttons))
        return FlowResult.stay(session, self._menu(draft))

    def _on_type(self, event: InboundEvent, session: Session, draft: EditDraft) -> FlowResult:
        try:
            direction = Direction(self.answer(event, "edit_type").lower())
        except ValueError:
            return FlowResult.stay(session, self.prompt("PROMPT_EDIT_TYPE", [
                (self.label("LABEL_INBOUND", "Inbound"), f"edit_type={Direction.INBOUND.value}"),
                (self.label("LABEL_OUTBOUND", "Outbound"), f"edit_type={Direction.OUTBOUND.value}"),
            ]))
        draft.corrected.kind = direction.kind
        draft.corrected.quantity = direction.signed(draft.corrected.quantity)
        return self._back_to_menu(draft, self.msg("MSG_EDIT_UPDATED"))

    def _required_text(self, event: InboundEvent) -> str:
        if not event.is_message or not event.text:
            raise ValidationError("A value is required", raw_input=event.raw)
        return event.text

    # ===== FINALIZE =====

    def _check_outbound(self, original: TransactionRecord, corrected: TransactionRecord):
        """
        Reject an Outbound correction the stock could not cover once the original is voided.

        Raises:
            IntegrityViolation: With ``available`` set to the stock after voiding
        """
        if corrected.kind is not RecordKind.OUTBOUND:
            return
        stock_after_void = self.ledger.stock_of(original.key) - original.quantity
        if stock_after_void < corrected.magnitude:
            raise IntegrityViolation(available=stock_after_void, requested=corrected.magnitude,
                                     key=original.key, row=original.row)

    def edit_reason(self, original: TransactionRecord, corrected: TransactionRecord) -> str:
        changed = changed_fields(original, corrected)
        if not changed:
            return self.msg("REASON_EDIT_UNCHANGED")
        return self.msg("REASON_EDIT_FIELDS", fields=", ".join(changed))

    def _finalize(self, session: Session, draft: EditDraft, actor: str) -> FlowResult:
        try:
            current = self.ledger.get_record(draft.row)
            if not current.is_valid:
                raise NotFoundError("Record voided during edit", row=draft.row)
        except NotFoundError as e:
            self.logger.info(f"Edit of row {draft.row} by {actor} abandoned: {e.as_dict()}")
            return FlowResult.end(text(self.msg("MSG_RECORD_NOT_FOUND")))

        original = draft.original
        corrected = draft.corrected.copy(
            quantity=normalized_quantity(draft.corrected.kind, draft.corrected.quantity),
            actor_name=actor, row=None,
        )

        with self.ledger.lock:
            try:
                self._check_outbound(original, corrected)
            except IntegrityViolation as e:
                self.logger.info(f"Edit of row {draft.row} by {actor} rejected: {e.as_dict()}")
                warning = self.msg("MSG_STOCK_INSUFFICIENT", name=original.name,
                                   current_stock=e.available, unit=original.unit)
                return FlowResult.goto(self._choice_state(draft), draft, text(warning), self._menu(draft))

            reason = self.edit_reason(original, corrected)
            if not self.ledger.void(draft.row, self.msg("REASON_EDIT_VOID", actor=actor), actor):
                return FlowResult.end(text(self.msg("MSG_WRITE_FAILED")))
            if not self.ledger.overwrite_cells(draft.row, {COL_VOID_REASON: reason}):
                self.logger.warning(f"Row {draft.row} voided but edit reason not recorded: {reason}")

            if not self.ledger.append(corrected):
                self.logger.error(f"Row {draft.row} voided but corrected record was not written: {corrected}")
                return FlowResult.end(text(self.msg("MSG_WRITE_FAILED")))

        self.logger.info(f"{actor} corrected row {draft.row}: {reason}")
        return FlowResult.end(text(self.msg("MSG_EDIT_SUCCESS_MODIFY")))
