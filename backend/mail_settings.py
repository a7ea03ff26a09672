"""Persisted IMAP account settings for SmartFile and the connection check."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from imapclient import IMAPClient

from database import get_mailbox_settings_entry, set_mailbox_settings_entry
from settings import S


logger = logging.getLogger(__name__)

UNSELECTABLE_FLAGS = {"\\Noselect", "\\NonExistent"}


@dataclass
class MailboxSettings:
    host: str
    port: int
    username: str
    inbox: str
    use_ssl: bool
    password: str | None = None


@dataclass(frozen=True)
class ConnectionReport:
    """What the connection check found out about the account."""

    folders: int
    selectable: int
    inbox_uidvalidity: Optional[int]
    keywords_allowed: bool

    def message(self) -> str:
        text = f"Verbindung erfolgreich, {self.selectable} von {self.folders} Ordnern lesbar."
        if not self.keywords_allowed:
            text += " Der Server erlaubt keine eigenen Schlagwörter, Empfehlungen werden nur gespeichert."
        return text


def _base_defaults() -> Dict[str, Any]:
    return {
        "host": S.IMAP_HOST or "localhost",
        "port": int(S.IMAP_PORT or 993),
        "username": S.IMAP_USERNAME or "",
        "password": S.IMAP_PASSWORD or "",
        "inbox": S.IMAP_INBOX or "INBOX",
        "use_ssl": bool(S.IMAP_USE_SSL),
    }


def _normalize_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValueError("Port muss eine Zahl sein.") from None
    if port <= 0 or port > 65535:
        raise ValueError("Port muss zwischen 1 und 65535 liegen.")
    return port


def _flag_names(flags) -> set[str]:
    return {flag.decode("ascii", "ignore") if isinstance(flag, bytes) else str(flag) for flag in flags}


def _require_account(host: str, username: str) -> tuple[str, str]:
    account_host = host.strip()
    if not account_host:
        raise ValueError("Für das Postfach fehlt der IMAP-Server.")
    account_user = username.strip()
    if not account_user:
        raise ValueError("Für das Postfach fehlt der Benutzername.")
    return account_host, account_user


def load_mailbox_settings(include_password: bool = False) -> MailboxSettings:
    stored = _base_defaults()
    overrides = get_mailbox_settings_entry()
    if overrides:
        stored.update({key: value for key, value in overrides.items() if value is not None})
    password_value = str(stored.get("password") or "").strip()
    try:
        port = _normalize_port(stored.get("port", 993))
    except ValueError:
        logger.warning("Ungültiger Port %r für das Postfach gespeichert, nutze 993", stored.get("port"))
        port = 993
    return MailboxSettings(
        host=str(stored.get("host") or "").strip() or "localhost",
        port=port,
        username=str(stored.get("username") or "").strip(),
        inbox=str(stored.get("inbox") or "").strip() or "INBOX",
        use_ssl=bool(stored.get("use_ssl", True)),
        password=password_value if include_password and password_value else None,
    )


def persist_mailbox_settings(
    *,
    host: str,
    port: int,
    username: str,
    inbox: str,
    use_ssl: bool,
    password: str | None,
    clear_password: bool,
) -> MailboxSettings:
    """Store the account SmartFile scans; the password is kept unless replaced or cleared."""

    account_host, account_user = _require_account(host, username)
    payload: Dict[str, Any] = {
        "host": account_host,
        "port": _normalize_port(port),
        "username": account_user,
        "inbox": inbox.strip() or "INBOX",
        "use_ssl": bool(use_ssl),
    }
    if clear_password:
        payload["password"] = ""
    elif password is not None:
        payload["password"] = password
    else:
        current = get_mailbox_settings_entry()
        if current and "password" in current:
            payload["password"] = current.get("password", "")
    set_mailbox_settings_entry(payload)
    logger.info("Postfach-Einstellungen für %s@%s gespeichert", account_user, account_host)
    return load_mailbox_settings(include_password=True)


def verify_mailbox_connection(
    *,
    host: str,
    port: int,
    username: str,
    password: str,
    inbox: str,
    use_ssl: bool,
) -> ConnectionReport:
    """Log in and check that SmartFile can enumerate folders and read the inbox.

    The inbox is selected read-only so the check never changes ``\\Seen``
    flags. ``keywords_allowed`` reflects whether ``PERMANENTFLAGS`` contains
    ``\\*``, which recommendation tags need.
    """

    account_host, account_user = _require_account(host, username)
    account_port = _normalize_port(port)
    if not password:
        raise ValueError("Passwort darf nicht leer sein.")

    client = IMAPClient(account_host, port=account_port, ssl=bool(use_ssl))
    try:
        client.login(account_user, password)
        listing = client.list_folders()
        selectable = [name for flags, _, name in listing if not _flag_names(flags) & UNSELECTABLE_FLAGS]
        selected = client.select_folder(inbox.strip() or "INBOX", readonly=True)
    finally:
        try:
            client.logout()
        except Exception:  # pragma: no cover - best effort cleanup
            logger.debug("Failed to logout after connection test", exc_info=True)

    permanent = _flag_names(selected.get(b"PERMANENTFLAGS", ()))
    uidvalidity = selected.get(b"UIDVALIDITY")
    return ConnectionReport(
        folders=len(listing),
        selectable=len(selectable),
        inbox_uidvalidity=int(uidvalidity) if uidvalidity is not None else None,
        keywords_allowed="\\*" in permanent,
    )
