import importlib
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

import pytest


BACKEND_PATH = Path(__file__).resolve().parents[1]
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))


from configuration import EngineConfig, parse_stopword_lines  # noqa: E402
from engine import FolderInfo  # noqa: E402
from terms import TextField  # noqa: E402


# Modules holding settings or a database engine; they are imported fresh for
# every test so that the environment of the test applies. ``models`` is left
# alone because its tables can only be registered once per process.
MODULES = [
    "settings",
    "configuration",
    "database",
    "mail_settings",
    "runtime_settings",
    "mailbox",
    "imap_worker",
    "scan_control",
    "rescan_control",
    "app",
]


@pytest.fixture()
def backend_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    db_path = data_dir / "app.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("INIT_RUN", "0")
    monkeypatch.setenv("MODEL_PATH", str(data_dir / "smartfile-model.json"))

    for name in MODULES:
        sys.modules.pop(name, None)

    modules = {}
    for module_name in MODULES:
        modules[module_name] = importlib.import_module(module_name)

    modules["database"].init_db()

    return {
        "settings": modules["settings"],
        "database": modules["database"],
        "mail_settings": modules["mail_settings"],
        "runtime_settings": modules["runtime_settings"],
        "imap_worker": modules["imap_worker"],
        "app_module": modules["app"],
        "data_dir": data_dir,
    }


@pytest.fixture()
def engine_config() -> EngineConfig:
    return EngineConfig(
        default_language="en",
        stopwords={
            "en": parse_stopword_lines(["# english", "the", "and", "for", "re  # reply prefix"]),
            "de": parse_stopword_lines(["der", "die", "und"]),
        },
        excluded_folders=("INBOX", "Drafts", "Sent", "Trash"),
        classify_folders=("INBOX", "Drafts"),
    )


@dataclass
class FakeItem:
    key: str
    folders: FrozenSet[str]
    text: str = ""
    subject: Optional[str] = None
    from_addr: Optional[str] = None
    lang: Optional[str] = None
    broken: bool = False

    def fields(self) -> Sequence[TextField]:
        if self.broken:
            raise LookupError(f"message {self.key} vanished")
        return [TextField.of("Subject", self.subject or ""), TextField.of("Body", self.text)]

    def language(self) -> Optional[str]:
        return self.lang


class FakeMailStore:
    """In-memory mail store; ``move`` and ``copy`` mimic the user filing mail."""

    def __init__(self, folders: Iterable[str]) -> None:
        self.folder_names: List[str] = list(folders)
        self.items: Dict[str, FakeItem] = {}
        self.recommendations: Dict[str, List[str]] = {}
        self.cleared: List[str] = []

    def add(self, key: str, folder: str, text: str, **kwargs) -> FakeItem:
        item = FakeItem(key=key, folders=frozenset([folder]), text=text, **kwargs)
        self.items[key] = item
        return item

    def move(self, key: str, *folders: str) -> None:
        self.items[key].folders = frozenset(folders)

    def list_folders(self) -> List[FolderInfo]:
        return [FolderInfo(name=name, folder_id=f"id-{name}") for name in self.folder_names]

    def iter_items(self):
        return list(self.items.values())

    def set_recommendations(self, item, ranked) -> None:
        self.recommendations[item.key] = [entry.name for entry in ranked]

    def clear_recommendations(self, item) -> None:
        self.cleared.append(item.key)
        self.recommendations.pop(item.key, None)


class MemoryTracker:
    def __init__(self) -> None:
        self.states = {}
        self.recorded = {}
        self.resolved = {}
        self.dismissed = []

    def get_state(self, key):
        return self.states.get(key)

    def set_state(self, key, state) -> None:
        self.states[key] = state

    def record_recommendations(self, key, **details) -> None:
        self.recorded[key] = details

    def resolve_recommendations(self, key, folders) -> None:
        self.resolved[key] = list(folders)

    def dismiss_recommendations(self, key) -> None:
        self.dismissed.append(key)


@pytest.fixture()
def mail_store() -> FakeMailStore:
    return FakeMailStore(["INBOX", "Drafts", "Sent", "Trash", "Projects", "Personal"])


@pytest.fixture()
def tracker() -> MemoryTracker:
    return MemoryTracker()
