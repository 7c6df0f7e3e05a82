"""
Outbound LINE message payloads.

Flows build these dicts; the gateway client transmits them. Layout lives here so
flow handlers only decide *what* to say.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from stockline.config import Config
from stockline.events import build_postback
from stockline.models import Material, RecordKind, TransactionRecord

Message = Dict
QuickReply = Tuple[str, str]  # (label, postback data)

LABEL_MAX_LENGTH = 20
DRIVE_FILE_ID_MIN_LENGTH = 20


def quick_reply_item(label: str, data: str) -> Dict:
    return {
        "type": "action",
        "action": {
            "type": "postback",
            "label": label[:LABEL_MAX_LENGTH],
            "data": data,
            "displayText": label,
        },
    }


def text(body: str, quick_replies: Optional[Sequence[QuickReply]] = None) -> Message:
    """Text message with optional quick-reply buttons."""
    message = {"type": "text", "text": body}
    if quick_replies:
        message["quickReply"] = {"items": [quick_reply_item(label, data) for label, data in quick_replies]}
    return message


def photo_url(ref: str, config: Config) -> str:
    """
    Resolve a photo reference to a displayable URL.

    Accepts a Google Drive share link, a bare Drive file ID, or any http(s) URL.
    Anything else falls back to DEFAULT_IMAGE_URL.
    """
    default = config.get("DEFAULT_IMAGE_URL", "")
    ref = (ref or "").strip()
    if not ref:
        return default

    file_id = ref
    if "drive.google.com/file/d/" in ref:
        file_id = ref.split("/d/")[1].split("/")[0]
    elif "drive.google.com/open?id=" in ref:
        file_id = ref.split("id=")[1].split("&")[0]

    if len(file_id) > DRIVE_FILE_ID_MIN_LENGTH and "http" not in file_id:
        return f"https://drive.google.com/uc?export=view&id={file_id}"
    if ref.startswith("http"):
        return ref
    return default


def _field_row(label: str, value: str, bold: bool = False) -> Dict:
    value_box = {"type": "text", "text": value or "-", "wrap": True, "color": "#666666",
                 "size": "sm", "flex": 5}
    if bold:
        value_box["weight"] = "bold"
    return {
        "type": "box", "layout": "baseline", "spacing": "sm",
        "contents": [{"type": "text", "text": label, "color": "#aaaaaa", "size": "sm", "flex": 2}, value_box],
    }


def _button(label: str, data: str, color: str) -> Dict:
    return {
        "type": "button", "style": "primary", "color": color, "height": "sm",
        "action": {"type": "postback", "label": label[:LABEL_MAX_LENGTH], "data": data},
    }


def _hero(ref: str, config: Config) -> Dict:
    return {"type": "image", "url": photo_url(ref, config), "size": "full",
            "aspectRatio": "20:13", "aspectMode": "fit", "backgroundColor": "#EEEEEE"}


# ===== MATERIAL CARDS =====

def material_bubble(material: Material, config: Config) -> Dict:
    """Card for one material with Inbound/Outbound buttons."""
    return {
        "type": "bubble",
        "hero": _hero(material.photo_ref, config),
        "body": {
            "type": "box", "layout": "vertical", "spacing": "md",
            "contents": [
                {"type": "text", "text": material.name, "weight": "bold", "size": "xl", "wrap": True},
                {
                    "type": "box", "layout": "vertical", "margin": "lg", "spacing": "sm",
                    "contents": [
                        _field_row("Stock", f"{material.stock} {material.unit}", bold=True),
                        _field_row("Serial", material.key),
                        _field_row("Model", material.model),
                        _field_row("Spec", material.spec),
                    ],
                },
            ],
        },
        "footer": {
            "type": "box", "layout": "horizontal", "spacing": "sm",
            "contents": [
                _button(config.get("LABEL_INBOUND", "Inbound"),
                        build_postback("stock_select", action="inbound", key=material.key), "#4CAF50"),
                _button(config.get("LABEL_OUTBOUND", "Outbound"),
                        build_postback("stock_select", action="outbound", key=material.key), "#F44336"),
            ],
        },
    }


def search_results(materials: List[Material], config: Config) -> Message:
    """
    Render search results.

    - none: not-found text
    - one: a single card
    - up to MAX_CAROUSEL_ITEMS: a carousel
    - more: a plain text listing
    """
    if not materials:
        return text(config.message("MSG_QUERY_NOT_FOUND"))

    materials = sorted(materials, key=lambda m: (m.category, m.serial))
    if len(materials) == 1:
        return {"type": "flex", "altText": materials[0].name,
                "contents": material_bubble(materials[0], config)}

    if len(materials) <= config.get_int("MAX_CAROUSEL_ITEMS", 12):
        return {
            "type": "flex",
            "altText": config.message("ALT_SEARCH_RESULTS", count=len(materials)),
            "contents": {"type": "carousel", "contents": [material_bubble(m, config) for m in materials]},
        }

    return inventory_listing(materials, config)


def inventory_listing(materials: List[Material], config: Config) -> Message:
    """Plain text listing, one line per material."""
    if not materials:
        return text(config.message("MSG_QUERY_NOT_FOUND"))
    body = config.message("INFO_TOO_MANY_RESULTS_HEADER", count=len(materials))
    for m in sorted(materials, key=lambda m: (m.category, m.serial)):
        body += config.message("TEMPLATE_ALL_INVENTORY_ITEM", id=m.key, name=m.name,
                               model=m.model or "-", spec=m.spec or "-", stock=m.stock, unit=m.unit)
    return text(body.strip())


# ===== USER RECORDS =====

def record_bubble(record: TransactionRecord, material: Optional[Material], config: Config) -> Dict:
    """Card for one ledger record; Valid records get edit/delete buttons."""
    contents = []
    if not record.is_valid:
        contents.append({"type": "text", "text": config.message("LABEL_VOID_RECORD"), "color": "#FF5555",
                         "size": "sm", "weight": "bold", "wrap": True})
    contents.append({"type": "text", "text": record.name, "weight": "bold", "size": "lg", "wrap": True})
    contents.append({
        "type": "box", "layout": "vertical", "margin": "md", "spacing": "sm",
        "contents": [
            _field_row("Model", record.model),
            _field_row("Spec", record.spec),
            _field_row("Type", record.kind.value, bold=True),
            _field_row("Quantity", f"{record.magnitude} {record.unit}"),
            _field_row("Time", record.timestamp),
        ],
    })

    bubble = {
        "type": "bubble",
        "hero": _hero(material.photo_ref if material else record.photo_ref, config),
        "body": {"type": "box", "layout": "vertical", "spacing": "md", "contents": contents},
    }

    if record.is_valid:
        edit_type = "new" if record.kind is RecordKind.CREATED else "stock"
        edit_label = config.get("LABEL_EDIT_RECORD" if edit_type == "new" else "LABEL_EDIT_MOVEMENT", "Edit")
        bubble["footer"] = {
            "type": "box", "layout": "horizontal", "spacing": "sm",
            "contents": [
                _button(edit_label, build_postback("edit_start", type=edit_type, row=record.row), "#5E81AC"),
                _button(config.get("LABEL_DELETE", "Delete"),
                        build_postback("delete_record", row=record.row), "#FF0000"),
            ],
        }
    return bubble


def user_records(records: List[TransactionRecord], materials: Dict[str, Material], config: Config) -> Message:
    if not records:
        return text(config.message("INFO_NO_RECORDS").strip())
    return {
        "type": "flex",
        "altText": config.message("ALT_USER_RECORDS", count=len(records)),
        "contents": {"type": "carousel",
                     "contents": [record_bubble(r, materials.get(r.key), config) for r in records]},
    }
