from __future__ import annotations

from email.header import decode_header
from email.message import Message
from email.utils import formataddr, getaddresses
from typing import List, Mapping, Sequence

from configuration import EngineConfig
from terms import TextField


def extract_text(msg: Message, limit: int = 16000) -> str:
    if msg.is_multipart():
        parts: list[str] = []
        for part in msg.walk():
            ctype = part.get_content_type()
            if ctype == "text/plain":
                try:
                    payload = part.get_payload(decode=True)
                    text = (payload or b"").decode(part.get_content_charset() or "utf-8", errors="ignore")
                    parts.append(text)
                except (LookupError, ValueError):
                    continue
        text = "\n".join(parts)
    else:
        try:
            payload = msg.get_payload(decode=True)
            text = (payload or b"").decode(msg.get_content_charset() or "utf-8", errors="ignore")
        except (LookupError, ValueError):
            return ""
    return text[:limit] if limit else text


def decode_value(raw: str | None) -> str:
    decoded = ""
    for value, encoding in decode_header(str(raw or "")):
        if isinstance(value, bytes):
            try:
                decoded += value.decode(encoding or "utf-8", errors="ignore")
            except LookupError:
                decoded += value.decode("utf-8", errors="ignore")
        else:
            decoded += value
    return decoded


def address_values(msg: Message, header: str) -> List[str]:
    """One entry per address so that each becomes a single term."""

    raw = [decode_value(value) for value in msg.get_all(header, []) or []]
    values: List[str] = []
    for name, address in getaddresses(raw):
        if not name and not address:
            continue
        values.append(formataddr((name, address)) if name else address)
    return values


def content_language(msg: Message) -> str | None:
    raw = str(msg.get("Content-Language", "") or "").strip()
    if not raw:
        return None
    first = raw.split(",", 1)[0].strip()
    return first.split("-", 1)[0].lower() or None


def message_fields(msg: Message, config: EngineConfig) -> List[TextField]:
    """Build the extractor input: no-space fields first, then as-is fields."""

    fields: List[TextField] = []
    for name in config.fields_no_spaces:
        fields.append(TextField.of(name, address_values(msg, name), no_spaces=True))
    for name in config.fields_as_is:
        if name.lower() == "body":
            value = extract_text(msg, config.body_max_chars)
        else:
            value = decode_value(msg.get(name, ""))
        fields.append(TextField.of(name, value))
    return fields


def mapping_fields(values: Mapping[str, str | Sequence[str] | None], config: EngineConfig) -> List[TextField]:
    """Like :func:`message_fields` but for plain ``name -> value`` input."""

    lookup = {str(name).lower(): value for name, value in values.items()}
    fields: List[TextField] = []
    for name in config.fields_no_spaces:
        fields.append(TextField.of(name, lookup.get(name.lower()), no_spaces=True))
    for name in config.fields_as_is:
        fields.append(TextField.of(name, lookup.get(name.lower())))
    return fields
