"""Utilities for interacting with the IMAP server."""

from __future__ import annotations

import email
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from email import policy
from email.message import Message
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple

from imapclient import IMAPClient

from classifier import RankedFolder
from configuration import EngineConfig
from engine import FolderInfo
from runtime_settings import resolve_mailbox_settings
from settings import S
from tagging_service import is_recommendation_tag, recommendation_tags
from terms import TextField
from utils import content_language, decode_value, message_fields


logger = logging.getLogger(__name__)


HEADER_ATTRIBUTE = b"BODY.PEEK[HEADER.FIELDS (MESSAGE-ID SUBJECT FROM)]"
HEADER_RESPONSE = b"BODY[HEADER.FIELDS (MESSAGE-ID SUBJECT FROM)]"
BODY_ATTRIBUTE = b"BODY.PEEK[]"
BODY_RESPONSE = b"BODY[]"


@contextmanager
def _connect() -> Iterator[IMAPClient]:
    settings = resolve_mailbox_settings(include_password=True)
    server = IMAPClient(settings.host, port=settings.port, ssl=settings.use_ssl)
    server.login(settings.username, settings.password or "")
    try:
        yield server
    finally:
        try:
            server.logout()
        except Exception:  # pragma: no cover - best effort cleanup
            logger.debug("Failed to logout from IMAP server", exc_info=True)


def list_folders() -> list[str]:
    try:
        with _connect() as server:
            response = server.list_folders()
            return [folder[2] for folder in response]
    except Exception as exc:  # pragma: no cover - network interaction
        logger.warning("Could not list folders: %s", exc)
        return []


def fetch_messages(server: IMAPClient, uids, attributes: Sequence[bytes], batch_size: int = 100):
    if not uids:
        return {}
    out = {}
    uid_list = list(uids)
    for i in range(0, len(uid_list), batch_size):
        chunk = uid_list[i : i + batch_size]
        data = server.fetch(chunk, list(attributes))
        out.update(data)
    return out


def _normalize_flags(raw_flags: Iterable[object]) -> List[str]:
    normalized: List[str] = []
    for flag in raw_flags:
        if isinstance(flag, bytes):
            normalized.append(flag.decode("utf-8", errors="ignore"))
        else:
            normalized.append(str(flag))
    return normalized


@dataclass
class ImapItem:
    """One message, possibly present as a copy in several folders."""

    key: str
    locations: List[Tuple[str, int]]
    subject: Optional[str] = None
    from_addr: Optional[str] = None
    store: Optional["ImapMailStore"] = field(default=None, repr=False, compare=False)
    _message: Optional[Message] = field(default=None, repr=False, compare=False)

    @property
    def folders(self) -> FrozenSet[str]:
        return frozenset(folder for folder, _ in self.locations)

    def message(self) -> Message:
        if self._message is None:
            if self.store is None:
                raise RuntimeError(f"item {self.key} is not attached to a mail store")
            folder, uid = self.locations[0]
            self._message = self.store.fetch_message(folder, uid)
        return self._message

    def fields(self) -> Sequence[TextField]:
        if self.store is None:
            raise RuntimeError(f"item {self.key} is not attached to a mail store")
        return message_fields(self.message(), self.store.config)

    def language(self) -> Optional[str]:
        return content_language(self.message())


class ImapMailStore:
    """Mail store over one logged-in ``IMAPClient`` connection.

    Items are grouped by ``Message-ID`` so that a copy in a second folder counts
    as filing the same item there. Message bodies are only fetched on demand
    and always with ``BODY.PEEK`` so the ``\\Seen`` flag stays untouched.
    """

    def __init__(
        self,
        server: IMAPClient,
        config: EngineConfig,
        *,
        write_tags: bool = False,
        tag_prefix: str | None = None,
    ) -> None:
        self.server = server
        self.config = config
        self.write_tags = write_tags
        self.tag_prefix = tag_prefix
        self._selected: Optional[Tuple[str, bool]] = None

    def _select(self, folder: str, readonly: bool = True) -> None:
        if self._selected == (folder, readonly):
            return
        self.server.select_folder(folder, readonly=readonly)
        self._selected = (folder, readonly)

    def list_folders(self) -> List[FolderInfo]:
        folders: List[FolderInfo] = []
        for flags, _delimiter, name in self.server.list_folders():
            normalized = {flag.lower() for flag in _normalize_flags(flags)}
            selectable = "\\noselect" not in normalized and "\\nonexistent" not in normalized
            folder_id = ""
            if selectable:
                try:
                    status = self.server.folder_status(name, [b"UIDVALIDITY"])
                    folder_id = str(status.get(b"UIDVALIDITY", ""))
                except Exception as exc:  # pragma: no cover - server specific behaviour
                    logger.warning("Could not read UIDVALIDITY of %s: %s", name, exc)
            folders.append(FolderInfo(name=name, folder_id=folder_id, selectable=selectable))
        return folders

    def _folder_headers(self, folder: FolderInfo) -> Dict[int, Message]:
        self._select(folder.name)
        uids = self.server.search(["ALL"])
        data = fetch_messages(self.server, uids, [HEADER_ATTRIBUTE])
        headers: Dict[int, Message] = {}
        for uid, payload in data.items():
            raw = (payload or {}).get(HEADER_RESPONSE)
            if raw is None:
                continue
            headers[int(uid)] = email.message_from_bytes(raw, policy=policy.compat32)
        return headers

    def iter_items(self) -> Iterator[ImapItem]:
        items: Dict[str, ImapItem] = {}
        for folder in self.list_folders():
            if not folder.selectable:
                continue
            try:
                headers = self._folder_headers(folder)
            except Exception as exc:  # pragma: no cover - defensive network handling
                logger.warning("Failed to read headers in %s: %s", folder.name, exc)
                continue
            for uid, header in headers.items():
                message_id = str(header.get("Message-ID", "") or "").strip()
                key = message_id or f"{folder.name}:{folder.folder_id}:{uid}"
                item = items.get(key)
                if item is None:
                    subject = decode_value(header.get("Subject", ""))
                    from_addr = decode_value(header.get("From", ""))
                    item = ImapItem(key=key, locations=[], subject=subject, from_addr=from_addr, store=self)
                    items[key] = item
                item.locations.append((folder.name, uid))
        yield from items.values()

    def fetch_message(self, folder: str, uid: int) -> Message:
        self._select(folder)
        data = self.server.fetch([uid], [BODY_ATTRIBUTE])
        raw = (data.get(uid) or {}).get(BODY_RESPONSE)
        if raw is None:
            raise LookupError(f"message {uid} vanished from {folder}")
        return email.message_from_bytes(raw, policy=policy.default)

    def _classify_locations(self, item: ImapItem) -> List[Tuple[str, int]]:
        return [(folder, uid) for folder, uid in item.locations if self.config.is_classify_folder(folder)]

    def set_recommendations(self, item: ImapItem, ranked: Sequence[RankedFolder]) -> None:
        if not self.write_tags:
            return
        tags = recommendation_tags(ranked, self.tag_prefix)
        if not tags:
            return
        for folder, uid in self._classify_locations(item):
            self._select(folder, readonly=False)
            self.server.add_flags([uid], tags)
            logger.debug("Tagged %s in %s with %s", uid, folder, tags)

    def clear_recommendations(self, item: ImapItem) -> None:
        if not self.write_tags:
            return
        for folder, uid in item.locations:
            self._select(folder, readonly=False)
            current = self.server.get_flags([uid]).get(uid, ())
            stale = [flag for flag in _normalize_flags(current) if is_recommendation_tag(flag, self.tag_prefix)]
            if stale:
                self.server.remove_flags([uid], stale)


@contextmanager
def open_mail_store(config: EngineConfig) -> Iterator[ImapMailStore]:
    with _connect() as server:
        yield ImapMailStore(
            server,
            config,
            write_tags=bool(S.WRITE_RECOMMENDATION_TAGS),
            tag_prefix=S.IMAP_TAG_PREFIX or None,
        )
