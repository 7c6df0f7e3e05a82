"""
Inbound chat events.

The gateway delivers two shapes the core cares about: a free-text message, or a
postback carrying a flat key/value command string such as
``stock_select&action=outbound&key=T01001``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode

MESSAGE = "message"
POSTBACK = "postback"
OTHER = "other"


def sanitize_user_input(text: str, max_length: int = 500) -> str:
    """
    Sanitize user input for safety.

    Args:
        text: Raw user input
        max_length: Maximum allowed length

    Returns:
        str: Text without control characters, trimmed
    """
    if not text:
        return ""
    text = ''.join(char for char in text if char.isprintable() or char.isspace())
    return text[:max_length].strip()


def parse_postback(data: str) -> Dict[str, str]:
    """
    Parse postback data into a dict.

    Bare tokens (``stock_select``) map to an empty string, percent-encoding is
    decoded.
    """
    return dict(parse_qsl(data or "", keep_blank_values=True))


def build_postback(command: str, **params: Any) -> str:
    """Build postback data: ``build_postback("edit_start", type="new", row=5)``."""
    if not params:
        return command
    return f"{command}&{urlencode(params)}"


@dataclass
class InboundEvent:
    kind: str
    user_id: str
    reply_token: Optional[str] = None
    text: str = ""
    data: str = ""
    params: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def message(cls, user_id: str, text: str, reply_token: Optional[str] = None) -> "InboundEvent":
        return cls(kind=MESSAGE, user_id=user_id, reply_token=reply_token,
                   text=sanitize_user_input(text))

    @classmethod
    def postback(cls, user_id: str, data: str, reply_token: Optional[str] = None) -> "InboundEvent":
        return cls(kind=POSTBACK, user_id=user_id, reply_token=reply_token,
                   data=data, params=parse_postback(data))

    @classmethod
    def from_line(cls, event: Dict[str, Any]) -> "InboundEvent":
        """Convert one LINE webhook event object."""
        user_id = event.get("source", {}).get("userId", "")
        reply_token = event.get("replyToken")
        event_type = event.get("type")
        if event_type == "postback":
            return cls.postback(user_id, event.get("postback", {}).get("data", ""), reply_token)
        if event_type == "message" and event.get("message", {}).get("type") == "text":
            return cls.message(user_id, event["message"].get("text", ""), reply_token)
        return cls(kind=OTHER, user_id=user_id, reply_token=reply_token)

    @property
    def is_postback(self) -> bool:
        return self.kind == POSTBACK

    @property
    def is_message(self) -> bool:
        return self.kind == MESSAGE

    @property
    def top_level_action(self) -> Optional[str]:
        """``query`` for ``action=query``; None for anything else."""
        if self.is_postback and self.data.startswith("action="):
            return self.params.get("action", "")
        return None

    @property
    def leading_token(self) -> str:
        """First ``_``-separated token of a postback, e.g. ``stock`` for ``stock_select``."""
        return self.data.split("_", 1)[0] if self.is_postback else ""

    def param(self, key: str, default: str = "") -> str:
        return self.params.get(key, default)

    @property
    def raw(self) -> str:
        """Raw input for logging."""
        return self.data if self.is_postback else self.text
