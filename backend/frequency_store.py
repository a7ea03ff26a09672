"""Sparse term -> folder -> count accounting and the learn/unlearn protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Set, Tuple


TermVector = Mapping[str, float]


@dataclass(frozen=True)
class RecordedState:
    """Folder membership and classification marker stored for one item."""

    folders: FrozenSet[str]
    classified: bool = False


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of reconciling one item against the frequency store."""

    action: str
    learned: bool
    state: Optional[RecordedState] = None
    unlearned_from: Tuple[str, ...] = ()
    learned_into: Tuple[str, ...] = ()


class FrequencyStore:
    """Mapping ``term -> {folder: raw count}`` that never keeps counts <= 0.

    Not thread-safe; the orchestration guarantees a single writer per pass.
    """

    def __init__(self, counts: Mapping[str, Mapping[str, float]] | None = None) -> None:
        self._counts: Dict[str, Dict[str, float]] = {}
        self.dirty = False
        if counts:
            for term, folders in counts.items():
                kept = {folder: float(value) for folder, value in folders.items() if float(value) > 0}
                if kept:
                    self._counts[term] = kept

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, term: object) -> bool:
        return term in self._counts

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FrequencyStore):
            return NotImplemented
        return self._counts == other._counts

    def count(self, term: str, folder: str) -> float:
        return self._counts.get(term, {}).get(folder, 0.0)

    def folders(self) -> Set[str]:
        found: Set[str] = set()
        for folder_counts in self._counts.values():
            found.update(folder_counts)
        return found

    def items(self) -> Iterator[Tuple[str, Mapping[str, float]]]:
        for term, folder_counts in self._counts.items():
            yield term, folder_counts

    def pair_count(self) -> int:
        return sum(len(folder_counts) for folder_counts in self._counts.values())

    def add_counts(self, term_vector: TermVector, folder: str) -> None:
        for term, count in term_vector.items():
            if count <= 0:
                continue
            folder_counts = self._counts.setdefault(term, {})
            folder_counts[folder] = folder_counts.get(folder, 0.0) + float(count)
            self.dirty = True

    def subtract_counts(self, term_vector: TermVector, folder: str) -> None:
        for term, count in term_vector.items():
            folder_counts = self._counts.get(term)
            if not folder_counts or folder not in folder_counts:
                continue
            remaining = folder_counts[folder] - float(count)
            if remaining > 0:
                folder_counts[folder] = remaining
            else:
                del folder_counts[folder]
            if not folder_counts:
                del self._counts[term]
            self.dirty = True

    def drop_folder(self, folder: str) -> int:
        """Remove every count of ``folder``; returns the number of dropped entries."""

        dropped = 0
        for term in list(self._counts):
            folder_counts = self._counts[term]
            if folder in folder_counts:
                del folder_counts[folder]
                dropped += 1
                if not folder_counts:
                    del self._counts[term]
        if dropped:
            self.dirty = True
        return dropped

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {term: dict(folder_counts) for term, folder_counts in self._counts.items()}


def reconcile_item(
    store: FrequencyStore,
    current_folders: Iterable[str],
    recorded: Optional[RecordedState],
    term_vector: Callable[[], TermVector],
    is_excluded: Callable[[str], bool],
) -> Reconciliation:
    """Bring the store in line with where an item lives now.

    ``term_vector`` is only called when counts actually change. A recorded
    item is learned when it still carries recommendations (``classified``) or
    when its folders changed; counts previously learned for an unclassified
    item are subtracted from its recorded folders first.
    """

    current = frozenset(current_folders)
    if recorded is None:
        return Reconciliation(action="recorded", learned=False, state=RecordedState(folders=current))

    moved = recorded.folders != current
    if not recorded.classified and not moved:
        return Reconciliation(action="unchanged", learned=False)

    stale: List[str] = []
    if moved and not recorded.classified:
        stale = [folder for folder in sorted(recorded.folders) if not is_excluded(folder)]
    targets = [folder for folder in sorted(current) if not is_excluded(folder)]
    if not stale and not targets:
        if moved:
            return Reconciliation(
                action="recorded",
                learned=False,
                state=RecordedState(folders=current, classified=recorded.classified),
            )
        return Reconciliation(action="unchanged", learned=False)

    vector = term_vector()
    for folder in stale:
        store.subtract_counts(vector, folder)
    for folder in targets:
        store.add_counts(vector, folder)
    return Reconciliation(
        action="learned",
        learned=True,
        state=RecordedState(folders=current, classified=False),
        unlearned_from=tuple(stale),
        learned_into=tuple(targets),
    )


def diff_folders(known: Iterable[str], current: Iterable[str]) -> Tuple[Set[str], Set[str]]:
    """Return ``(added, removed)`` folder names between two enumerations."""

    known_set = set(known)
    current_set = set(current)
    return current_set - known_set, known_set - current_set
