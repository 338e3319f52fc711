from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Tuple

import numpy as np

from .dtw_functions import make_distance_function, make_search
from .dtw_utils import (
    DimensionMismatch,
    EmptyDataset,
    InvalidConfiguration,
    ensure_float64_2d,
)
from .reduction_utils import (
    IndexRange,
    NeighborRecord,
    RankedList,
    build_neighbour_records,
    rank_records,
    remove_duplicates,
    rerank_ties,
    select_indices,
)


# ---------------------------
# Configuration
# ---------------------------

@dataclass(frozen=True)
class ReductionConfig:
    percentage_to_remove: int = 10
    class_range: str = "first-last"
    invert_class_range: bool = False
    distance: str = "DTWDistance -W 10"
    quota: Literal["per_class", "pooled"] = "per_class"
    selection_order: Literal["rank", "priority"] = "rank"
    parallel: bool = True

    def __post_init__(self):
        if not 0 <= int(self.percentage_to_remove) <= 100:
            raise InvalidConfiguration(
                f"percentage_to_remove must lie in [0, 100], got {self.percentage_to_remove}"
            )
        if self.quota not in ("per_class", "pooled"):
            raise InvalidConfiguration(f"quota must be 'per_class' or 'pooled', got '{self.quota}'")
        if self.selection_order not in ("priority", "rank"):
            raise InvalidConfiguration(
                f"selection_order must be 'priority' or 'rank', got '{self.selection_order}'"
            )
        # fail early on malformed ranges / distance specs
        IndexRange(self.class_range, invert=self.invert_class_range)
        make_distance_function(self.distance)


# ---------------------------
# Rank-based numerosity reduction
# ---------------------------

class NumerosityReduction:
    """
    Rank-based numerosity reduction for 1-NN classification.

    fit():   drop exact duplicates, build the leave-one-out nearest-neighbour
             graph, rank every series by how it helps (+1) or hurts (-2) the
             classification of the series that have it as nearest neighbour,
             and break rank ties by closeness to those series.
    resample: walk the contribution ranking (or, with
             selection_order="priority", the tie-broken sequence) from the
             most valuable series down and keep
             `count - count * p // 100` series per class in range
             (or pooled over the range); other classes are kept whole.
    """

    def __init__(
        self,
        *,
        percentage_to_remove: int = 10,
        class_range: str = "first-last",
        invert_class_range: bool = False,
        distance: str = "DTWDistance -W 10",
        quota: Literal["per_class", "pooled"] = "per_class",
        selection_order: Literal["rank", "priority"] = "rank",
        parallel: bool = True,
    ):
        self.config = ReductionConfig(
            percentage_to_remove=int(percentage_to_remove),
            class_range=class_range,
            invert_class_range=bool(invert_class_range),
            distance=distance,
            quota=quota,
            selection_order=selection_order,
            parallel=bool(parallel),
        )
        self.distance_function = make_distance_function(self.config.distance)

        # fitted state
        self.classes_: Optional[np.ndarray] = None
        self.kept_positions_: Optional[np.ndarray] = None     # rows of the input surviving deduplication
        self.records_: List[NeighborRecord] = []
        self.ranked_: Optional[RankedList] = None
        self.priorities_: Optional[List[NeighborRecord]] = None   # tie-broken sequence
        self.sample_indices_: Optional[np.ndarray] = None      # input rows in output order

        self._X: Optional[np.ndarray] = None
        self._y: Optional[np.ndarray] = None
        self._class_index: Optional[np.ndarray] = None

    @classmethod
    def from_config(cls, config: ReductionConfig) -> "NumerosityReduction":
        return cls(
            percentage_to_remove=config.percentage_to_remove,
            class_range=config.class_range,
            invert_class_range=config.invert_class_range,
            distance=config.distance,
            quota=config.quota,
            selection_order=config.selection_order,
            parallel=config.parallel,
        )

    # ---------------------------
    # Ranking
    # ---------------------------
    def fit(self, X, y, classes: Optional[Sequence] = None) -> "NumerosityReduction":
        X2d = ensure_float64_2d(X)
        y = np.asarray(y)
        if X2d.shape[0] == 0:
            raise EmptyDataset("Cannot reduce an empty dataset")
        if y.ndim != 1 or y.shape[0] != X2d.shape[0]:
            raise DimensionMismatch(f"{X2d.shape[0]} series but labels of shape {y.shape}")

        # nominal class encoding
        if classes is None:
            self.classes_ = np.unique(y)
        else:
            self.classes_ = np.asarray(classes)
            unknown = np.setdiff1d(np.unique(y), self.classes_)
            if unknown.size:
                raise InvalidConfiguration(f"Labels {unknown.tolist()} are not among the given classes")
        class_index = np.searchsorted(self.classes_, y) if classes is None else \
            np.asarray([int(np.flatnonzero(self.classes_ == v)[0]) for v in y], dtype=np.int64)

        # 1) duplicates
        keep = remove_duplicates(X2d, y)
        self.kept_positions_ = keep
        self._X = X2d[keep]
        self._y = y[keep]
        self._class_index = np.asarray(class_index, dtype=np.int64)[keep]

        # 2) leave-one-out 1-NN graph (ids = rows of the deduplicated data)
        search = make_search(self.distance_function, self._X)
        nearest = search.leave_one_out_table(parallel=self.config.parallel)
        self.records_ = build_neighbour_records(self._class_index.tolist(), nearest)

        # 3) contribution ranks
        self.ranked_ = rank_records(self.records_)

        # 4) tie-break by proximity to the series each one serves as neighbour
        self.priorities_ = rerank_ties(self.ranked_, search.distance_between)

        self.sample_indices_ = None
        return self

    # ---------------------------
    # Selection
    # ---------------------------
    def _require_fit(self):
        if self.priorities_ is None:
            raise RuntimeError("fit must be called before selecting series.")

    def selection_ids(self) -> List[int]:
        """Deduplicated ids kept by the reduction, in output order."""
        self._require_fit()
        class_range = IndexRange(self.config.class_range, invert=self.config.invert_class_range)
        class_range.set_upper(len(self.classes_) - 1)
        if self.config.selection_order == "priority":
            order = [rec.id for rec in self.priorities_]
        else:
            order = self.ranked_.ids()
        return select_indices(
            order,
            self._class_index,
            class_range,
            self.config.percentage_to_remove,
            quota=self.config.quota,
        )

    def resample(self) -> Tuple[np.ndarray, np.ndarray]:
        ids = np.asarray(self.selection_ids(), dtype=np.int64)
        self.sample_indices_ = self.kept_positions_[ids]
        return self._X[ids].copy(), self._y[ids].copy()

    def fit_resample(self, X, y, classes: Optional[Sequence] = None) -> Tuple[np.ndarray, np.ndarray]:
        return self.fit(X, y, classes=classes).resample()

