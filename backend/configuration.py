"""Helpers to load the stopword tables and the per-pass engine configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Sequence, Tuple

from settings import S

_STOPWORD_DIR = Path(__file__).with_name("stopwords")


def parse_stopword_lines(lines: Iterable[str]) -> FrozenSet[str]:
    words: List[str] = []
    for line in lines:
        current = line.strip()
        if not current or current.startswith("#"):
            continue
        if "#" in current:
            current = current.split("#", 1)[0].strip()
        if current:
            words.append(current.lower())
    return frozenset(words)


@lru_cache(maxsize=None)
def load_stopwords(language: str) -> FrozenSet[str]:
    path = _STOPWORD_DIR / f"stopwords_{language}.txt"
    if not path.exists():
        return frozenset()
    with path.open("r", encoding="utf-8") as handle:
        return parse_stopword_lines(handle)


def available_languages() -> List[str]:
    return sorted(
        path.stem.replace("stopwords_", "", 1) for path in _STOPWORD_DIR.glob("stopwords_*.txt")
    )


def _clean_names(values: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(str(value).strip() for value in values if str(value).strip()))


@dataclass(frozen=True)
class EngineConfig:
    """Read-only inputs of the term extractor and folder exclusion checks."""

    default_language: str = "en"
    stopwords: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    fields_as_is: Tuple[str, ...] = ("Subject", "Body")
    fields_no_spaces: Tuple[str, ...] = ("From", "To", "Cc", "Bcc")
    excluded_folders: Tuple[str, ...] = ()
    ignore_hidden_folders: bool = True
    hidden_marker: str = "."
    classify_folders: Tuple[str, ...] = ("INBOX", "Drafts")
    body_max_chars: int = 16000

    def is_excluded_folder(self, name: str | None) -> bool:
        if not name or not name.strip():
            return True
        if self.ignore_hidden_folders and self.hidden_marker and name.startswith(self.hidden_marker):
            return True
        needle = name.casefold()
        return any(needle == excluded.casefold() for excluded in self.excluded_folders)

    def is_classify_folder(self, name: str) -> bool:
        needle = name.casefold()
        return any(needle == candidate.casefold() for candidate in self.classify_folders)

    def resolve_language(self, candidate: str | None = None) -> str:
        if candidate:
            primary = candidate.strip().lower().replace("_", "-").split("-", 1)[0]
            if primary in self.stopwords:
                return primary
        return self.default_language

    def is_stop_word(self, word: str, language: str | None = None) -> bool:
        table = self.stopwords.get(language or self.default_language)
        if table is None:
            return False
        return word in table


def build_engine_config(
    *,
    default_language: str,
    languages: Sequence[str],
    excluded_folders: Sequence[str],
    classify_folders: Sequence[str],
) -> EngineConfig:
    wanted = list(dict.fromkeys([*languages, default_language]))
    stopwords: Dict[str, FrozenSet[str]] = {}
    for language in wanted:
        words = load_stopwords(language)
        if words:
            stopwords[language] = words
    return EngineConfig(
        default_language=default_language,
        stopwords=stopwords,
        fields_as_is=_clean_names(S.FIELDS_TO_PROCESS),
        fields_no_spaces=_clean_names(S.FIELDS_TO_PROCESS_NO_SPACES),
        excluded_folders=_clean_names(excluded_folders),
        ignore_hidden_folders=bool(S.IGNORE_HIDDEN_FOLDERS),
        hidden_marker=S.HIDDEN_FOLDER_MARKER or "",
        classify_folders=_clean_names(classify_folders),
        body_max_chars=max(int(S.BODY_MAX_CHARS or 0), 0),
    )
