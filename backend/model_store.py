"""Persist and restore the learned model as a single JSON document."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from errors import ModelCorruptError, ModelNotFoundError, ModelSaveError


logger = logging.getLogger(__name__)


MODEL_FORMAT_VERSION = 1
MODEL_FILE_MODE = 0o600


@dataclass
class ModelSnapshot:
    """Folder list, raw counts and the statistics derived from them.

    Section order on disk is fixed: folders, counts, idf, tfidf, vector lengths.
    """

    folders: Dict[str, str] = field(default_factory=dict)
    counts: Dict[str, Dict[str, float]] = field(default_factory=dict)
    idf: Dict[str, float] = field(default_factory=dict)
    tfidf: Dict[str, Dict[str, float]] = field(default_factory=dict)
    vector_lengths: Dict[str, float] = field(default_factory=dict)

    def sections(self) -> List[Any]:
        return [self.folders, self.counts, self.idf, self.tfidf, self.vector_lengths]


def _write_atomic(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=path.name + ".", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, MODEL_FILE_MODE)
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.unlink(tmp_path)
            except OSError:  # pragma: no cover - best effort cleanup
                logger.debug("Could not remove temporary model file %s", tmp_path, exc_info=True)


def save_model(path: str | Path, snapshot: ModelSnapshot) -> None:
    """Write ``snapshot`` to ``path``; the previous file survives any failure."""

    target = Path(path)
    document = {"version": MODEL_FORMAT_VERSION, "model": snapshot.sections()}
    try:
        payload = json.dumps(document, ensure_ascii=False, sort_keys=True)
        _write_atomic(target, payload)
    except (OSError, TypeError, ValueError) as exc:
        raise ModelSaveError(f"Modell konnte nicht gespeichert werden ({target}): {exc}") from exc
    logger.info(
        "Saved model with %s folders and %s terms to %s",
        len(snapshot.folders),
        len(snapshot.counts),
        target,
    )


def _expect_mapping(value: Any, section: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ModelCorruptError(f"section {section!r} must be an object")
    return value


def _as_number(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ModelCorruptError(f"{where} must be a number")
    return float(value)


def _parse_nested(value: Any, section: str) -> Dict[str, Dict[str, float]]:
    parsed: Dict[str, Dict[str, float]] = {}
    for term, inner in _expect_mapping(value, section).items():
        inner_map = _expect_mapping(inner, f"{section}.{term}")
        parsed[str(term)] = {
            str(folder): _as_number(number, f"{section}.{term}.{folder}")
            for folder, number in inner_map.items()
        }
    return parsed


def _parse_flat(value: Any, section: str) -> Dict[str, float]:
    return {
        str(key): _as_number(number, f"{section}.{key}")
        for key, number in _expect_mapping(value, section).items()
    }


def parse_snapshot(document: Any) -> ModelSnapshot:
    if not isinstance(document, dict):
        raise ModelCorruptError("model document must be an object")
    version = document.get("version")
    if version != MODEL_FORMAT_VERSION:
        raise ModelCorruptError(f"unsupported model version {version!r}")
    sections = document.get("model")
    if not isinstance(sections, list) or len(sections) != 5:
        raise ModelCorruptError("model must contain exactly five sections")

    folders_raw = _expect_mapping(sections[0], "folders")
    folders = {str(name): str(folder_id) for name, folder_id in folders_raw.items()}
    counts = _parse_nested(sections[1], "counts")
    idf = _parse_flat(sections[2], "idf")
    tfidf = _parse_nested(sections[3], "tfidf")
    vector_lengths = _parse_flat(sections[4], "vector_lengths")

    for term, folder_counts in counts.items():
        if not folder_counts:
            raise ModelCorruptError(f"term {term!r} has no folder counts")
        if any(number <= 0 for number in folder_counts.values()):
            raise ModelCorruptError(f"term {term!r} has a non-positive count")
    if set(idf) != set(counts):
        raise ModelCorruptError("idf terms do not match the counted terms")
    if set(tfidf) != set(counts):
        raise ModelCorruptError("tfidf terms do not match the counted terms")

    return ModelSnapshot(
        folders=folders,
        counts=counts,
        idf=idf,
        tfidf=tfidf,
        vector_lengths=vector_lengths,
    )


def load_model(path: str | Path) -> ModelSnapshot:
    target = Path(path)
    if not target.exists():
        raise ModelNotFoundError(f"no model at {target}")
    try:
        with target.open("r", encoding="utf-8") as handle:
            document = json.load(handle)
    except FileNotFoundError as exc:
        raise ModelNotFoundError(f"no model at {target}") from exc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ModelCorruptError(f"model at {target} is unreadable: {exc}") from exc
    snapshot = parse_snapshot(document)
    logger.debug("Loaded model with %s folders and %s terms", len(snapshot.folders), len(snapshot.counts))
    return snapshot
