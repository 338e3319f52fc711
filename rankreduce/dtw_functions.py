from __future__ import annotations

import heapq
import shlex
from collections import Counter
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .dtw_utils import (
    # errors
    DimensionMismatch,
    EmptyDataset,
    InvalidConfiguration,
    NoDistanceComputed,
    # kernels
    _dtw_banded,
    _envelope,
    _euclidean,
    _lb_keogh,
    _loo_nn_table,
    _pruned_nn_scan,
    # helpers
    check_window_percent,
    ensure_float64_2d,
    ensure_series,
    sakoe_chiba_window,
)
from .reduction_utils import IndexRange


# ---------------------------
# Distance functions
# ---------------------------

class _AttributeDistance:
    """Shared attribute-range handling for the distance functions."""

    name = ""

    def __init__(self, *, attribute_indices: str = "first-last", invert_selection: bool = False):
        self._range = IndexRange(attribute_indices, invert=invert_selection)

    @property
    def attribute_indices(self) -> str:
        return self._range.get_ranges()

    @property
    def invert_selection(self) -> bool:
        return self._range.invert

    def columns(self, length: int) -> np.ndarray:
        self._range.set_upper(length - 1)
        cols = self._range.selection()
        if cols.size == 0:
            raise InvalidConfiguration(
                f"Attribute range '{self.attribute_indices}' (invert={self.invert_selection}) selects nothing"
            )
        return cols

    def select(self, X) -> np.ndarray:
        """Restrict the last axis of a series or dataset to the selected attributes."""
        X = np.asarray(X, dtype=np.float64)
        cols = self.columns(X.shape[-1])
        if cols.size == X.shape[-1]:
            return X
        return np.ascontiguousarray(X[..., cols])

    def _pair(self, first, second) -> Tuple[np.ndarray, np.ndarray]:
        x = ensure_series(first)
        y = ensure_series(second)
        if x.shape[0] != y.shape[0]:
            raise DimensionMismatch(f"Series lengths differ: {x.shape[0]} vs {y.shape[0]}")
        return self.select(x), self.select(y)

    def get_options(self) -> List[str]:
        opts = ["-R", self.attribute_indices]
        if self.invert_selection:
            opts.append("-V")
        return opts

    def __repr__(self) -> str:
        return " ".join([self.name] + self.get_options())


class DTWDistance(_AttributeDistance):
    """
    DTW distance restricted by a Sakoe-Chiba band of `window_percent`
    percent of the (selected) series length.
    """

    name = "DTWDistance"

    def __init__(
        self,
        window_percent: int = 10,
        *,
        attribute_indices: str = "first-last",
        invert_selection: bool = False,
    ):
        super().__init__(attribute_indices=attribute_indices, invert_selection=invert_selection)
        self.window_percent = check_window_percent(window_percent)

    def window_size(self, length: int) -> int:
        return sakoe_chiba_window(self.window_percent, length)

    def distance(self, first, second, cutoff: float = np.inf) -> float:
        x, y = self._pair(first, second)
        return float(_dtw_banded(x, y, self.window_size(x.shape[0]), float(cutoff)))

    def get_options(self) -> List[str]:
        return ["-W", str(self.window_percent)] + super().get_options()

    @classmethod
    def from_options(cls, options: Sequence[str]) -> "DTWDistance":
        kw = _parse_distance_options(options, allow_window=True)
        return cls(**kw)


class EuclideanDistance(_AttributeDistance):
    """Plain Euclidean distance; used with the linear-scan search."""

    name = "EuclideanDistance"

    def distance(self, first, second, cutoff: float = np.inf) -> float:
        x, y = self._pair(first, second)
        return float(_euclidean(x, y, float(cutoff)))

    @classmethod
    def from_options(cls, options: Sequence[str]) -> "EuclideanDistance":
        kw = _parse_distance_options(options, allow_window=False)
        return cls(**kw)


def _parse_distance_options(options: Sequence[str], *, allow_window: bool) -> dict:
    kw: dict = {}
    opts = list(options)
    i = 0
    while i < len(opts):
        tok = opts[i]
        if tok == "-W" and allow_window:
            if i + 1 >= len(opts):
                raise InvalidConfiguration("-W expects an integer window percentage")
            try:
                kw["window_percent"] = int(opts[i + 1])
            except ValueError:
                raise InvalidConfiguration(f"-W expects an integer, got '{opts[i + 1]}'") from None
            i += 2
        elif tok == "-R":
            if i + 1 >= len(opts):
                raise InvalidConfiguration("-R expects a range such as 'first-last'")
            kw["attribute_indices"] = opts[i + 1]
            i += 2
        elif tok == "-V":
            kw["invert_selection"] = True
            i += 1
        else:
            raise InvalidConfiguration(f"Unknown distance option '{tok}'")
    return kw


_DISTANCES = {
    "dtwdistance": DTWDistance,
    "dtw": DTWDistance,
    "euclideandistance": EuclideanDistance,
    "euclidean": EuclideanDistance,
}

def make_distance_function(spec: str):
    """
    Build a distance function from a specification string, e.g.
    "DTWDistance -W 20 -R first-last" or "euclidean".
    """
    tokens = shlex.split(spec or "")
    if not tokens:
        raise InvalidConfiguration("Invalid distance function specification string")
    key = tokens[0].rsplit(".", 1)[-1].lower()
    if key not in _DISTANCES:
        raise InvalidConfiguration(f"Unknown distance function '{tokens[0]}'")
    return _DISTANCES[key].from_options(tokens[1:])


# ---------------------------
# Neighbour searches
# ---------------------------

class _NeighbourSearch:
    def __init__(self, instances=None, distance_function=None):
        self._X: Optional[np.ndarray] = None      # selected attributes only
        self._distances: Optional[np.ndarray] = None
        self.distance_function = distance_function
        if instances is not None:
            self.set_instances(instances)

    def set_instances(self, instances):
        X = ensure_float64_2d(instances)
        self._raw = X
        self._X = self.distance_function.select(X) if X.shape[0] > 0 else X
        self._distances = None

    @property
    def num_instances(self) -> int:
        return 0 if self._X is None else int(self._X.shape[0])

    def _check_ready(self):
        if self._X is None or self._X.shape[0] == 0:
            raise EmptyDataset("No instances supplied yet. Call set_instances() first.")

    def _query(self, query) -> np.ndarray:
        q = ensure_series(query)
        if q.shape[0] != self._raw.shape[1]:
            raise DimensionMismatch(
                f"Query of length {q.shape[0]} vs instances of length {self._raw.shape[1]}"
            )
        return self.distance_function.select(q)

    def get_distances(self) -> np.ndarray:
        """Distances of the neighbours returned by the last search."""
        if self._distances is None:
            raise NoDistanceComputed(
                "No distances available. Please call either k_nearest_neighbours or nearest_neighbour first."
            )
        return self._distances

    def nearest_neighbour(self, query) -> int:
        ids = self.k_nearest_neighbours(query, 1)
        if ids.size == 0:
            raise EmptyDataset("No candidate left to compare against")
        return int(ids[0])

    def distance_between(self, i: int, j: int) -> float:
        """Exact distance between two stored instances."""
        self._check_ready()
        return self.distance_function.distance(self._raw[i], self._raw[j])

    def leave_one_out_table(self, parallel: bool = True) -> List[np.ndarray]:
        """Nearest-neighbour ids of every instance against all the others."""
        self._check_ready()
        return [self.k_nearest_neighbours(self._raw[i], 1, exclude=i) for i in range(self.num_instances)]


class DTWSearch(_NeighbourSearch):
    """
    Nearest-neighbour search for DTWDistance with LB_Keogh pruning.

    k_nearest_neighbours keeps a single best distance: a strictly better
    candidate resets the result, an exact tie is appended. DTW only runs when
    a candidate's LB_Keogh bound is strictly below the current best, so a
    series whose bound equals the best is pruned even when it would tie
    (e.g. a second copy of the query). The result is therefore the tied set
    found in scan order, whatever `k` is. k_nearest_heap prunes only strictly
    beyond the k-th distance and keeps those ties.
    """

    def __init__(self, instances=None, distance_function=None, *, skip_identical: bool = False):
        self.skip_identical = bool(skip_identical)
        super().__init__(instances, distance_function if distance_function is not None else DTWDistance())
        self.set_distance_function(self.distance_function)

    def set_distance_function(self, df):
        if not isinstance(df, DTWDistance):
            raise InvalidConfiguration("The distance function to use must be DTWDistance")
        self.distance_function = df
        if self._X is not None:
            self.set_instances(self._raw)

    def _window(self) -> int:
        return self.distance_function.window_size(self._X.shape[1])

    def envelope(self, query) -> Tuple[np.ndarray, np.ndarray]:
        self._check_ready()
        return _envelope(self._query(query), self._window())

    def k_nearest_neighbours(self, query, k: int = 1, exclude: Optional[int] = None) -> np.ndarray:
        self._check_ready()
        if k < 1:
            raise InvalidConfiguration(f"k must be >= 1, got {k}")
        q = self._query(query)
        w = self._window()
        lower, upper = _envelope(q, w)
        ties = np.empty(self.num_instances, dtype=np.int64)
        best, count = _pruned_nn_scan(
            q, self._X, lower, upper, w,
            -1 if exclude is None else int(exclude),
            self.skip_identical, ties,
        )
        ids = ties[:count].copy()
        self._distances = np.full(count, best, dtype=np.float64)
        return ids

    def k_nearest_heap(self, query, k: int = 1, exclude: Optional[int] = None) -> np.ndarray:
        """
        True k-best: bounded max-heap keyed by distance; every candidate tied
        with the k-th distance is retained. Ids come back sorted by (distance, id).
        """
        self._check_ready()
        if k < 1:
            raise InvalidConfiguration(f"k must be >= 1, got {k}")
        q = self._query(query)
        w = self._window()
        lower, upper = _envelope(q, w)

        heap: List[float] = []               # negated k smallest distances; root is the k-th
        found: List[Tuple[float, int]] = []
        for i in range(self.num_instances):
            if exclude is not None and i == exclude:
                continue
            kth = -heap[0] if len(heap) == k else np.inf
            cand = self._X[i]
            # ties at the k-th distance are kept, so only prune strictly beyond it
            if _lb_keogh(lower, upper, cand) > kth:
                continue
            d = float(_dtw_banded(cand, q, w, kth))
            if d > kth or (self.skip_identical and d == 0.0):
                continue
            found.append((d, i))
            if len(heap) < k:
                heapq.heappush(heap, -d)
            elif d < kth:
                heapq.heapreplace(heap, -d)

        kth = -heap[0] if heap else np.inf
        found = sorted(f for f in found if f[0] <= kth)
        self._distances = np.asarray([d for d, _ in found], dtype=np.float64)
        return np.asarray([j for _, j in found], dtype=np.int64)

    def leave_one_out_table(self, parallel: bool = True) -> List[np.ndarray]:
        self._check_ready()
        if not parallel:
            return super().leave_one_out_table(parallel=False)
        _, edges = _loo_nn_table(self._X, self._window(), self.skip_identical)
        return [np.flatnonzero(edges[i]) for i in range(edges.shape[0])]


class LinearNNSearch(_NeighbourSearch):
    """Exhaustive search; returns the k nearest plus any ties at the k-th distance."""

    def __init__(self, instances=None, distance_function=None):
        super().__init__(instances, distance_function if distance_function is not None else EuclideanDistance())

    def k_nearest_neighbours(self, query, k: int = 1, exclude: Optional[int] = None) -> np.ndarray:
        self._check_ready()
        if k < 1:
            raise InvalidConfiguration(f"k must be >= 1, got {k}")
        q = self._query(query)
        df = self.distance_function
        ids = np.asarray([i for i in range(self.num_instances) if exclude is None or i != exclude], dtype=np.int64)
        if ids.size == 0:
            self._distances = np.zeros(0, dtype=np.float64)
            return ids
        # distances on already-selected attributes
        if isinstance(df, DTWDistance):
            w = df.window_size(q.shape[0])
            d = np.asarray([_dtw_banded(self._X[i], q, w, np.inf) for i in ids], dtype=np.float64)
        else:
            d = np.asarray([_euclidean(self._X[i], q, np.inf) for i in ids], dtype=np.float64)
        order = np.argsort(d, kind="stable")
        kth = d[order[min(k, ids.size) - 1]]
        order = order[d[order] <= kth]
        self._distances = d[order]
        return ids[order]


def make_search(distance_function, instances=None) -> _NeighbourSearch:
    if isinstance(distance_function, DTWDistance):
        return DTWSearch(instances, distance_function)
    return LinearNNSearch(instances, distance_function)


# ---------------------------
# Functional forms
# ---------------------------

def k_nearest(query, X, k: int = 1, window_percent: int = 10) -> Tuple[np.ndarray, np.ndarray]:
    """
    Series of X tied at the best DTW distance to `query`, and one distance
    per returned series.
    """
    X2d = ensure_float64_2d(X)
    if X2d.shape[0] == 0:
        raise EmptyDataset("Cannot search an empty dataset")
    search = DTWSearch(X2d, DTWDistance(window_percent))
    ids = search.k_nearest_neighbours(query, k)
    return X2d[ids], search.get_distances()

def predict_1nn(X_train, y_train, X_test, distance_function=None) -> np.ndarray:
    """
    1-NN labels for X_test. When several training series tie for nearest,
    the majority label wins; equal votes go to the label seen first.
    """
    y_train = np.asarray(y_train)
    search = make_search(distance_function if distance_function is not None else DTWDistance(), X_train)
    preds = []
    for x in ensure_float64_2d(X_test):
        ids = search.k_nearest_neighbours(x, 1)
        if ids.size == 0:
            raise EmptyDataset("No training series to vote with")
        votes = Counter(y_train[ids].tolist())
        preds.append(votes.most_common(1)[0][0])
    return np.asarray(preds)
