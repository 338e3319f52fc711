from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Literal, Optional, Sequence

import numpy as np

from .dtw_utils import DimensionMismatch, EmptyDataset, InvalidConfiguration


# ---------------------------
# Index ranges ("first-3,5,7-last")
# ---------------------------

class IndexRange:
    """
    Comma separated list of 1-based indices and inclusive spans, with
    'first' and 'last' as symbolic ends. Membership is queried with 0-based
    indices once `set_upper` fixed the largest valid index.
    """

    def __init__(self, ranges: str = "first-last", invert: bool = False):
        self.invert = bool(invert)
        self._upper: Optional[int] = None
        self._flags: Optional[np.ndarray] = None
        self.set_ranges(ranges)

    @staticmethod
    def _check_token(tok: str) -> str:
        tok = tok.strip().lower()
        if tok in ("first", "last"):
            return tok
        if tok.isdigit() and int(tok) >= 1:
            return tok
        raise InvalidConfiguration(f"Invalid range token '{tok}'")

    def set_ranges(self, ranges: str):
        if ranges is None or not str(ranges).strip():
            raise InvalidConfiguration("Range list must not be empty")
        parts: List[tuple] = []
        for item in str(ranges).split(","):
            item = item.strip()
            if not item:
                raise InvalidConfiguration(f"Empty item in range list '{ranges}'")
            if "-" in item:
                lo, _, hi = item.partition("-")
                parts.append((self._check_token(lo), self._check_token(hi)))
            else:
                tok = self._check_token(item)
                parts.append((tok, tok))
        self._ranges = str(ranges).strip()
        self._parts = parts
        if self._upper is not None:
            self.set_upper(self._upper)

    def get_ranges(self) -> str:
        return self._ranges

    def _resolve(self, tok: str) -> int:
        if tok == "first":
            return 0
        if tok == "last":
            return self._upper
        return int(tok) - 1

    def set_upper(self, upper: int):
        upper = int(upper)
        if upper < 0:
            raise InvalidConfiguration("Range upper limit must be >= 0")
        self._upper = upper
        flags = np.zeros(upper + 1, dtype=bool)
        for lo_tok, hi_tok in self._parts:
            lo, hi = self._resolve(lo_tok), self._resolve(hi_tok)
            # indices past the upper limit clamp to it
            lo, hi = min(lo, upper), min(hi, upper)
            if lo <= hi:
                flags[lo:hi + 1] = True
        self._flags = flags

    def is_in_range(self, index: int) -> bool:
        if self._flags is None:
            raise InvalidConfiguration("set_upper must be called before querying a range")
        if index < 0 or index > self._upper:
            raise InvalidConfiguration(f"Index {index} outside [0, {self._upper}]")
        return bool(self._flags[index]) != self.invert

    def selection(self) -> np.ndarray:
        """0-based indices that are in range, ascending."""
        if self._flags is None:
            raise InvalidConfiguration("set_upper must be called before querying a range")
        mask = ~self._flags if self.invert else self._flags
        return np.flatnonzero(mask)

    def __repr__(self) -> str:
        return f"IndexRange({self._ranges!r}, invert={self.invert})"


# ---------------------------
# Neighbour bookkeeping
# ---------------------------

@dataclass
class NeighborRecord:
    id: int                   # row in the deduplicated dataset
    label: object
    nearest: List[int] = field(default_factory=list)   # ids this series has as nearest neighbours
    reverse: List[int] = field(default_factory=list)   # ids having this series as nearest neighbour
    rank: float = 0.0
    proximity: Optional[float] = None   # tie-break score, set only for tied records


class RankedList:
    """
    Records in non-decreasing rank order. Insertion uses a lower-bound
    bisection, so a new record lands before existing records of equal rank.
    """

    def __init__(self, records: Iterable[NeighborRecord] = ()):
        self._records: List[NeighborRecord] = []
        self._ranks: List[float] = []
        for rec in records:
            self.insert(rec)

    def insert_position(self, rank: float) -> int:
        return bisect.bisect_left(self._ranks, rank)

    def insert(self, rec: NeighborRecord) -> int:
        i = self.insert_position(rec.rank)
        self._records.insert(i, rec)
        self._ranks.insert(i, rec.rank)
        return i

    def ties_at(self, index: int) -> List[NeighborRecord]:
        """The run of records starting at `index` that share its rank."""
        rank = self._ranks[index]
        j = index + 1
        while j < len(self._ranks) and self._ranks[j] == rank:
            j += 1
        return self._records[index:j]

    def ids(self) -> List[int]:
        return [r.id for r in self._records]

    def ranks(self) -> List[float]:
        return list(self._ranks)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, i) -> NeighborRecord:
        return self._records[i]

    def __iter__(self):
        return iter(self._records)

    def __reversed__(self):
        return reversed(self._records)


# ---------------------------
# Phase 1: duplicates
# ---------------------------

def remove_duplicates(X: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Positions of the rows to keep: a row is dropped when all its values and
    its label equal those of an earlier kept row.
    """
    X = np.asarray(X)
    y = np.asarray(y)
    n = X.shape[0]
    if y.shape[0] != n:
        raise DimensionMismatch(f"{n} series but {y.shape[0]} labels")
    alive = np.ones(n, dtype=bool)
    for i in range(n - 1):
        if not alive[i]:
            continue
        rest = np.arange(i + 1, n)
        rest = rest[alive[rest]]
        if rest.size == 0:
            break
        same = np.all(X[rest] == X[i], axis=1) & (y[rest] == y[i])
        alive[rest[same]] = False
    return np.flatnonzero(alive)


# ---------------------------
# Phase 2: leave-one-out graph
# ---------------------------

def build_neighbour_records(labels: Sequence, nearest: Sequence[Sequence[int]]) -> List[NeighborRecord]:
    """
    One record per id; `nearest[i]` are the ids found as i's nearest
    neighbours. Reverse sets are filled afterwards, in id order.
    """
    if len(labels) != len(nearest):
        raise DimensionMismatch(f"{len(labels)} labels but {len(nearest)} neighbour lists")
    records = [
        NeighborRecord(id=i, label=labels[i], nearest=[int(j) for j in nearest[i]])
        for i in range(len(labels))
    ]
    for rec in records:
        for j in rec.nearest:
            records[j].reverse.append(rec.id)
    return records


# ---------------------------
# Phase 3: ranking
# ---------------------------

def contribution_rank(rec: NeighborRecord, records: Sequence[NeighborRecord]) -> int:
    """+1 for every reverse neighbour sharing the label, -2 for every other one."""
    score = 0
    for j in rec.reverse:
        score += 1 if records[j].label == rec.label else -2
    return score

def rank_records(records: Sequence[NeighborRecord]) -> RankedList:
    ranked = RankedList()
    for rec in records:
        rec.rank = float(contribution_rank(rec, records))
        ranked.insert(rec)
    return ranked


# ---------------------------
# Phase 4: tie-break
# ---------------------------

def proximity_score(rec: NeighborRecord, distance: Callable[[int, int], float]) -> float:
    """Sum of 1/d^2 over the reverse neighbours; a zero distance counts as +inf."""
    if not rec.reverse:
        return 0.0
    d = np.asarray([distance(rec.id, j) for j in rec.reverse], dtype=np.float64)
    with np.errstate(divide="ignore"):
        return float(np.sum(1.0 / (d * d)))

def rerank_ties(ranked: RankedList, distance: Callable[[int, int], float]) -> List[NeighborRecord]:
    """
    Walk `ranked`; every run of equal rank longer than one is re-ordered by
    proximity score (stored on `rec.proximity`, ranks stay untouched). Runs
    are concatenated into the priority sequence, least valuable first.
    """
    priorities: List[NeighborRecord] = []
    i = 0
    while i < len(ranked):
        run = ranked.ties_at(i)
        if len(run) > 1:
            block: List[NeighborRecord] = []
            scores: List[float] = []
            for rec in run:
                rec.proximity = proximity_score(rec, distance)
                j = bisect.bisect_left(scores, rec.proximity)
                block.insert(j, rec)
                scores.insert(j, rec.proximity)
            priorities.extend(block)
        else:
            priorities.append(run[0])
        i += len(run)
    return priorities


# ---------------------------
# Selection
# ---------------------------

def keep_count(count: int, percentage: int) -> int:
    return count - (count * int(percentage)) // 100

def select_indices(
    order: Sequence[int],
    class_index: np.ndarray,
    class_range: IndexRange,
    percentage: int,
    quota: Literal["per_class", "pooled"] = "per_class",
) -> List[int]:
    """
    `order` lists ids from least to most valuable. Traversal runs from the
    most valuable id down: out-of-range ids are always kept, in-range ids are
    kept until their quota is used up. Returns kept ids in traversal order.
    """
    if quota not in ("per_class", "pooled"):
        raise InvalidConfiguration(f"Unknown quota '{quota}'")
    if len(order) == 0:
        raise EmptyDataset("Nothing to select from")

    in_range = {int(c): class_range.is_in_range(int(c)) for c in np.unique(class_index)}
    remaining: Dict[object, int] = {}
    if quota == "per_class":
        for c, ok in in_range.items():
            if ok:
                remaining[c] = keep_count(int(np.sum(class_index == c)), percentage)
    else:
        pooled = sum(int(np.sum(class_index == c)) for c, ok in in_range.items() if ok)
        remaining["*"] = keep_count(pooled, percentage)

    kept: List[int] = []
    for i in reversed(list(order)):
        c = int(class_index[i])
        if not in_range[c]:
            kept.append(int(i))
            continue
        key = c if quota == "per_class" else "*"
        if remaining[key] > 0:
            kept.append(int(i))
            remaining[key] -= 1
    return kept
