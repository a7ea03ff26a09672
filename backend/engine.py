"""Orchestration of the learn, rebuild and classify cycle."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence

from classifier import RankedFolder, classify
from configuration import EngineConfig
from errors import ModelInvariantError, ModelLoadError, ModelNotFoundError, ModelSaveError, PassBusyError
from frequency_store import FrequencyStore, RecordedState, diff_folders, reconcile_item
from model_store import ModelSnapshot, load_model, save_model
from terms import TextField, extract_terms
from tfidf import ModelStatistics, build_statistics


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FolderInfo:
    name: str
    folder_id: str
    selectable: bool = True


class MailItem(Protocol):
    key: str
    folders: FrozenSet[str]
    subject: Optional[str]
    from_addr: Optional[str]

    def fields(self) -> Sequence[TextField]:
        ...

    def language(self) -> Optional[str]:
        ...


class MailStore(Protocol):
    def list_folders(self) -> List[FolderInfo]:
        ...

    def iter_items(self) -> Iterable[MailItem]:
        ...

    def set_recommendations(self, item: MailItem, ranked: Sequence[RankedFolder]) -> None:
        ...

    def clear_recommendations(self, item: MailItem) -> None:
        ...


class StateTracker(Protocol):
    def get_state(self, key: str) -> Optional[RecordedState]:
        ...

    def set_state(self, key: str, state: RecordedState) -> None:
        ...

    def record_recommendations(self, key: str, **details) -> None:
        ...

    def resolve_recommendations(self, key: str, folders: Iterable[str]) -> None:
        ...

    def dismiss_recommendations(self, key: str) -> None:
        ...


@dataclass(frozen=True)
class ItemOutcome:
    key: str
    status: str
    reason: Optional[str] = None


@dataclass
class PassReport:
    rebuilt: bool = False
    learned: bool = False
    folders_changed: bool = False
    statistics_rebuilt: bool = False
    saved: bool = False
    classified: int = 0
    skipped: int = 0
    outcomes: List[ItemOutcome] = field(default_factory=list)

    def add(self, outcome: ItemOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == "classified":
            self.classified += 1
        elif outcome.status == "skipped":
            self.skipped += 1

    def as_dict(self) -> Dict[str, object]:
        statuses: Dict[str, int] = {}
        for outcome in self.outcomes:
            statuses[outcome.status] = statuses.get(outcome.status, 0) + 1
        return {
            "rebuilt": self.rebuilt,
            "learned": self.learned,
            "folders_changed": self.folders_changed,
            "statistics_rebuilt": self.statistics_rebuilt,
            "saved": self.saved,
            "classified": self.classified,
            "skipped": self.skipped,
            "statuses": statuses,
        }


def known_folders(folders: Iterable[FolderInfo], config: EngineConfig) -> Dict[str, str]:
    """Return ``name -> folder_id`` for every folder that may receive counts."""

    result: Dict[str, str] = {}
    for folder in folders:
        if not folder.selectable:
            continue
        if config.is_excluded_folder(folder.name):
            continue
        result[folder.name] = folder.folder_id
    return result


class SmartFileEngine:
    """Owns the frequency store, the folder list and the derived statistics.

    Only one pass runs at a time. Classification reads an immutable
    ``ModelStatistics`` snapshot which is replaced wholesale after a rebuild,
    so readers never see a half-computed table.
    """

    def __init__(self, model_path: str | Path) -> None:
        self.model_path = Path(model_path)
        self.store = FrequencyStore()
        self.folders: Dict[str, str] = {}
        self.model_loaded = False
        self._stats = ModelStatistics()
        self._run_lock = threading.Lock()

    @property
    def statistics(self) -> ModelStatistics:
        return self._stats

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    def snapshot(self) -> ModelSnapshot:
        stats = self._stats
        return ModelSnapshot(
            folders=dict(self.folders),
            counts=self.store.to_dict(),
            idf=dict(stats.idf),
            tfidf={term: dict(weights) for term, weights in stats.tfidf.items()},
            vector_lengths=dict(stats.vector_lengths),
        )

    def summary(self) -> Dict[str, object]:
        stats = self._stats
        return {
            "loaded": self.model_loaded,
            "path": str(self.model_path),
            "folders": sorted(self.folders),
            "folder_ids": dict(self.folders),
            "vector_lengths": dict(stats.vector_lengths),
            "terms": len(self.store),
            "pairs": self.store.pair_count(),
            "total_folders": stats.total_folders,
            "dirty": self.store.dirty,
            "busy": self.busy,
        }

    def load(self) -> None:
        """Restore the model from disk; raises ``ModelLoadError`` subclasses."""

        snapshot = load_model(self.model_path)
        store = FrequencyStore(snapshot.counts)
        unknown = store.folders() - set(snapshot.folders)
        if unknown:
            raise ModelInvariantError(f"counts reference unknown folders: {sorted(unknown)}")
        self.store = store
        self.folders = dict(snapshot.folders)
        self._stats = ModelStatistics(
            total_folders=len(snapshot.folders),
            idf=snapshot.idf,
            tfidf=snapshot.tfidf,
            vector_lengths=snapshot.vector_lengths,
        )
        self.model_loaded = True
        logger.info("Model loaded from %s (%s terms)", self.model_path, len(store))

    def ensure_loaded(self) -> None:
        """Load the persisted model unless one is in memory.

        Raises ``PassBusyError`` while a pass owns the model and
        ``ModelLoadError`` subclasses when nothing usable is on disk.
        """

        if not self._run_lock.acquire(blocking=False):
            raise PassBusyError("Modell wird gerade aufgebaut.")
        try:
            if not self.model_loaded:
                self.load()
        finally:
            self._run_lock.release()

    def save(self) -> None:
        try:
            save_model(self.model_path, self.snapshot())
        except ModelSaveError:
            self.model_loaded = False
            raise
        self.store.dirty = False

    def refresh_statistics(self) -> ModelStatistics:
        stats = build_statistics(self.store, self.folders)
        self._stats = stats
        return stats

    def term_vector(self, item: MailItem, config: EngineConfig) -> Dict[str, float]:
        return extract_terms(item.fields(), item.language(), config)

    def classify_fields(
        self,
        fields: Sequence[TextField],
        config: EngineConfig,
        language: Optional[str] = None,
    ) -> List[RankedFolder]:
        return classify(extract_terms(fields, language, config), self._stats)

    def rebuild(
        self,
        mail_store: MailStore,
        tracker: StateTracker,
        config: EngineConfig,
        report: Optional[PassReport] = None,
        items: Optional[Sequence[MailItem]] = None,
    ) -> PassReport:
        """Learn every item from scratch and persist the result."""

        report = report or PassReport()
        folders = known_folders(mail_store.list_folders(), config)
        store = FrequencyStore()
        for item in items if items is not None else list(mail_store.iter_items()):
            try:
                targets = sorted(name for name in item.folders if name in folders)
                recorded = tracker.get_state(item.key)
                if not targets:
                    classified = bool(recorded and recorded.classified and recorded.folders == item.folders)
                    tracker.set_state(item.key, RecordedState(folders=item.folders, classified=classified))
                    status = "recorded"
                    if recorded and recorded.classified and not classified:
                        tracker.dismiss_recommendations(item.key)
                        status = "dismissed"
                    report.add(ItemOutcome(item.key, status))
                    continue
                vector = self.term_vector(item, config)
                tracker.set_state(item.key, RecordedState(folders=item.folders))
            except Exception as exc:
                logger.warning("Skipping item %s during rebuild: %s", item.key, exc)
                report.add(ItemOutcome(item.key, "skipped", str(exc)))
                continue
            for folder in targets:
                store.add_counts(vector, folder)
            reason = None
            if recorded and recorded.classified:
                try:
                    mail_store.clear_recommendations(item)
                    tracker.resolve_recommendations(item.key, targets)
                except Exception as exc:
                    logger.warning("Could not clear recommendations for %s: %s", item.key, exc)
                    reason = str(exc)
            report.add(ItemOutcome(item.key, "learned", reason))

        self.store = store
        self.folders = folders
        self.refresh_statistics()
        report.rebuilt = True
        report.learned = bool(len(store))
        report.statistics_rebuilt = True
        self.save()
        report.saved = True
        self.model_loaded = True
        logger.info("Rebuilt model from %s folders and %s terms", len(folders), len(store))
        return report

    def _ensure_model(self) -> bool:
        """Return True when a usable model is in memory."""

        if self.model_loaded and self.model_path.exists():
            return True
        try:
            self.load()
        except ModelNotFoundError:
            logger.info("No model at %s, rebuilding", self.model_path)
            return False
        except (ModelLoadError, ModelInvariantError) as exc:
            logger.warning("Model at %s is unusable (%s), rebuilding", self.model_path, exc)
            return False
        return True

    def _classify_item(
        self,
        item: MailItem,
        mail_store: MailStore,
        tracker: StateTracker,
        config: EngineConfig,
    ) -> Optional[ItemOutcome]:
        sources = sorted(name for name in item.folders if config.is_classify_folder(name))
        if not sources:
            return None
        if any(not config.is_excluded_folder(name) for name in item.folders):
            return None
        recorded = tracker.get_state(item.key)
        if recorded and recorded.classified:
            return None
        ranked = classify(self.term_vector(item, config), self._stats)
        if not ranked:
            if recorded is None:
                tracker.set_state(item.key, RecordedState(folders=item.folders))
            return ItemOutcome(item.key, "no_recommendation")
        mail_store.set_recommendations(item, ranked)
        tracker.record_recommendations(
            item.key,
            src_folder=sources[0],
            subject=item.subject,
            from_addr=item.from_addr,
            ranked=[entry.as_dict() for entry in ranked],
        )
        tracker.set_state(item.key, RecordedState(folders=item.folders, classified=True))
        return ItemOutcome(item.key, "classified")

    def _reconcile(
        self,
        item: MailItem,
        mail_store: MailStore,
        tracker: StateTracker,
        config: EngineConfig,
    ) -> ItemOutcome:
        recorded = tracker.get_state(item.key)
        result = reconcile_item(
            self.store,
            item.folders,
            recorded,
            lambda: self.term_vector(item, config),
            config.is_excluded_folder,
        )
        if result.state is not None:
            tracker.set_state(item.key, result.state)
        if recorded is None or not recorded.classified:
            return ItemOutcome(item.key, result.action)

        if result.learned:
            outcome = ItemOutcome(item.key, "learned")
        elif result.state is not None and not any(config.is_classify_folder(name) for name in item.folders):
            # left the classification folders without being filed anywhere
            tracker.set_state(item.key, RecordedState(folders=item.folders))
            outcome = ItemOutcome(item.key, "dismissed")
        else:
            return ItemOutcome(item.key, result.action)

        # counts are already applied at this point
        try:
            mail_store.clear_recommendations(item)
            if outcome.status == "learned":
                tracker.resolve_recommendations(item.key, result.learned_into)
            else:
                tracker.dismiss_recommendations(item.key)
        except Exception as exc:
            logger.warning("Could not clear recommendations for %s: %s", item.key, exc)
            return ItemOutcome(outcome.key, outcome.status, str(exc))
        return outcome

    def run_pass(
        self,
        mail_store: MailStore,
        tracker: StateTracker,
        config: EngineConfig,
        force_rebuild: bool = False,
    ) -> PassReport:
        """Run one complete pass; raises ``PassBusyError`` if one is already running."""

        if not self._run_lock.acquire(blocking=False):
            raise PassBusyError("Es läuft bereits ein Durchlauf.")
        try:
            return self._run_pass_locked(mail_store, tracker, config, force_rebuild)
        except Exception:
            # the last persisted snapshot stays authoritative
            self.model_loaded = False
            raise
        finally:
            self._run_lock.release()

    def _run_pass_locked(
        self,
        mail_store: MailStore,
        tracker: StateTracker,
        config: EngineConfig,
        force_rebuild: bool,
    ) -> PassReport:
        report = PassReport()
        items = list(mail_store.iter_items())
        rebuild = force_rebuild or not self._ensure_model()
        if rebuild:
            self.rebuild(mail_store, tracker, config, report=report, items=items)

        for item in items:
            try:
                outcome = self._classify_item(item, mail_store, tracker, config)
            except Exception as exc:
                logger.warning("Could not classify %s: %s", item.key, exc)
                outcome = ItemOutcome(item.key, "skipped", str(exc))
            if outcome is not None:
                report.add(outcome)

        if rebuild:
            return report

        for item in items:
            try:
                outcome = self._reconcile(item, mail_store, tracker, config)
            except Exception as exc:
                logger.warning("Could not reconcile %s: %s", item.key, exc)
                outcome = ItemOutcome(item.key, "skipped", str(exc))
            if outcome.status == "learned":
                report.learned = True
            if outcome.status != "unchanged":
                report.add(outcome)

        current = known_folders(mail_store.list_folders(), config)
        added, removed = diff_folders(self.folders, current)
        stray = self.store.folders() - set(current)
        if added or removed or stray:
            report.folders_changed = True
            for folder in sorted(removed | stray):
                dropped = self.store.drop_folder(folder)
                logger.info("Folder %s disappeared, dropped %s counts", folder, dropped)
            self.folders = current

        if report.learned or report.folders_changed or self.store.dirty:
            self.refresh_statistics()
            report.statistics_rebuilt = True
            self.save()
            report.saved = True
        logger.info(
            "Pass finished: learned=%s folders_changed=%s classified=%s skipped=%s",
            report.learned,
            report.folders_changed,
            report.classified,
            report.skipped,
        )
        return report
