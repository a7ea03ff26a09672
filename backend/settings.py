
"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    IMAP_HOST: str = "localhost"
    IMAP_PORT: int = 993
    IMAP_USERNAME: str = "user@example.org"
    IMAP_PASSWORD: str = ""
    IMAP_USE_SSL: bool = True
    IMAP_INBOX: str = "INBOX"

    DATABASE_URL: str = "sqlite:///data/app.db"
    INIT_RUN: bool = False
    MODEL_PATH: str = "data/smartfile-model.json"
    ENABLED: bool = True
    POLL_INTERVAL_SECONDS: int = 300
    LOG_LEVEL: str = "INFO"

    DEFAULT_LANGUAGE: str = "en"
    LANGUAGES: List[str] = ["en", "de"]
    FIELDS_TO_PROCESS: List[str] = ["Subject", "Body"]
    FIELDS_TO_PROCESS_NO_SPACES: List[str] = ["From", "To", "Cc", "Bcc"]
    BODY_MAX_CHARS: int = 16000

    EXCLUDED_FOLDERS: List[str] = ["INBOX", "Drafts", "Sent", "Trash", "Junk"]
    IGNORE_HIDDEN_FOLDERS: bool = True
    HIDDEN_FOLDER_MARKER: str = "."
    CLASSIFY_FOLDERS: List[str] = ["INBOX", "Drafts"]

    WRITE_RECOMMENDATION_TAGS: bool = False
    IMAP_TAG_PREFIX: str = "SmartFile"

    class Config:
        env_file = ".env"


S = Settings()
