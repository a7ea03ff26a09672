"""Helpers to resolve runtime configuration with persisted overrides."""

from __future__ import annotations

from typing import List

from settings import S
from configuration import EngineConfig, build_engine_config, load_stopwords
from database import (
    get_classify_folders_override,
    get_default_language_override,
    get_excluded_folders_override,
    get_poll_interval_override,
)
from mail_settings import MailboxSettings, load_mailbox_settings


MIN_POLL_INTERVAL_SECONDS = 10


def resolve_excluded_folders() -> List[str]:
    """Return the folders that never receive counts."""

    override = get_excluded_folders_override()
    if override is not None:
        return override
    return list(S.EXCLUDED_FOLDERS)


def resolve_classify_folders() -> List[str]:
    override = get_classify_folders_override()
    if override is not None:
        return override
    return list(S.CLASSIFY_FOLDERS)


def resolve_default_language() -> str:
    """Return the default language, ignoring overrides without a stopword table."""

    override = get_default_language_override()
    if override and load_stopwords(override):
        return override
    return (S.DEFAULT_LANGUAGE or "en").strip().lower()


def resolve_poll_interval_seconds() -> float:
    override = get_poll_interval_override()
    value = override if override is not None else S.POLL_INTERVAL_SECONDS
    return float(max(int(value or 0), MIN_POLL_INTERVAL_SECONDS))


def resolve_mailbox_settings(include_password: bool = False) -> MailboxSettings:
    """Return the active mailbox connection settings including overrides."""

    return load_mailbox_settings(include_password=include_password)


def resolve_mailbox_inbox() -> str:
    """Return the configured inbox folder name with sane defaults."""

    settings = load_mailbox_settings(include_password=False)
    inbox = settings.inbox.strip() if settings.inbox else ""
    return inbox or "INBOX"


def load_engine_config() -> EngineConfig:
    """Snapshot of all effective settings for one pass."""

    classify = resolve_classify_folders()
    inbox = resolve_mailbox_inbox()
    if not classify:
        classify = [inbox]
    return build_engine_config(
        default_language=resolve_default_language(),
        languages=S.LANGUAGES,
        excluded_folders=resolve_excluded_folders(),
        classify_folders=classify,
    )
