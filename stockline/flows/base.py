"""
Shared plumbing for flow handlers.

A handler never touches the session store. It receives the current session (or
None at an entry point) and returns a FlowResult; the router persists it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple
from urllib.parse import urlencode

from stockline.config import Config
from stockline.errors import ValidationError
from stockline.events import InboundEvent
from stockline.ledger import LedgerStore
from stockline.messages import Message, QuickReply, text
from stockline.sessions import Flow, FlowState, Session

MANUAL_UNIT = "_manual"
SKIP = "skip"
YES = "yes"
NO = "no"


@dataclass
class FlowResult:
    """
    Outcome of handling one event.

    ``state`` None means terminal: the router clears the session.
    """
    messages: List[Message] = field(default_factory=list)
    state: Optional[FlowState] = None
    draft: Any = None

    @classmethod
    def goto(cls, state: FlowState, draft: Any, *messages: Message) -> "FlowResult":
        return cls(messages=list(messages), state=state, draft=draft)

    @classmethod
    def end(cls, *messages: Message) -> "FlowResult":
        return cls(messages=list(messages))

    @classmethod
    def stay(cls, session: Session, *messages: Message) -> "FlowResult":
        """Re-enter the current state, e.g. to re-prompt after bad input."""
        return cls(messages=list(messages), state=session.state, draft=session.draft)

    @property
    def terminal(self) -> bool:
        return self.state is None


def parse_quantity(value: str) -> int:
    """
    Parse a positive whole quantity typed by the user.

    Args:
        value: Raw text

    Returns:
        int: Quantity greater than zero

    Raises:
        ValidationError: For anything else; nothing is rounded or coerced
    """
    cleaned = (value or "").strip()
    if not cleaned.isdecimal() or int(cleaned) <= 0:
        raise ValidationError("Quantity must be a positive whole number", raw_input=value)
    return int(cleaned)


class FlowHandler:
    """Base class for the five flows."""

    flow: Flow

    def __init__(self, ledger: LedgerStore, config: Config):
        self.ledger = ledger
        self.config = config
        self.logger = logging.getLogger('flows')

    def handle(self, event: InboundEvent, session: Optional[Session], actor: str) -> FlowResult:
        raise NotImplementedError

    # ===== HELPERS =====

    def msg(self, key: str, **replacements) -> str:
        return self.config.message(key, **replacements)

    def label(self, key: str, default: str) -> str:
        return self.config.get(key, default)

    def cancel_button(self) -> QuickReply:
        return (self.label("LABEL_CANCEL", "Cancel"), "action=cancel")

    def prompt(self, key: str, quick_replies: Sequence[QuickReply] = (), cancel: bool = True,
               **replacements) -> Message:
        """Prompt text with quick replies and, by default, a trailing Cancel button."""
        buttons = list(quick_replies)
        if cancel:
            buttons.append(self.cancel_button())
        return text(self.msg(key, **replacements), buttons)

    def confirm_buttons(self, param: str, confirm_label: Optional[str] = None) -> List[QuickReply]:
        return [
            (confirm_label or self.label("LABEL_CONFIRM", "Confirm"), f"{param}={YES}"),
            (self.label("LABEL_CANCEL", "Cancel"), f"{param}={NO}"),
        ]

    def categories(self) -> List[Tuple[str, str]]:
        """``QR_CATEGORIES`` as (code, label) pairs, e.g. ("T01", "Tools")."""
        pairs = []
        for entry in self.config.get_list("QR_CATEGORIES"):
            code, _, name = entry.partition(":")
            pairs.append((code.strip().upper(), name.strip() or code.strip()))
        return pairs

    def units(self) -> List[str]:
        return self.config.get_list("QR_UNITS")

    def unit_buttons(self, param: str) -> List[QuickReply]:
        buttons = [(unit, urlencode({param: unit})) for unit in self.units()]
        buttons.append((self.label("LABEL_MANUAL_UNIT", "Type a unit"), f"{param}={MANUAL_UNIT}"))
        return buttons

    def is_skip(self, value: str) -> bool:
        keywords = {k.lower() for k in self.config.get_list("SKIP_KEYWORDS")}
        keywords.add(self.label("LABEL_SKIP", "Skip").lower())
        return value.strip().lower() in keywords

    def answer(self, event: InboundEvent, param: str) -> str:
        """
        Value chosen by the user: the postback parameter if present, else typed text.

        Returns an empty string for a postback that does not carry ``param``.
        """
        if event.is_postback:
            return event.param(param).strip()
        return event.text.strip()

    def reject(self, session: Session, error: ValidationError, *messages: Message) -> FlowResult:
        """Log a validation failure and re-prompt in the same state."""
        self.logger.info(f"Rejected input in {session.state} for {session.user_id}: {error.as_dict()}")
        return FlowResult.stay(session, *messages)
