from __future__ import annotations

from typing import Tuple

import numpy as np
from numba import njit, prange, set_num_threads


# ---------------------------
# Errors
# ---------------------------

class DimensionMismatch(ValueError):
    """Two series (or a series and a dataset) of unequal length were compared."""


class InvalidConfiguration(ValueError):
    """A distance function, search strategy or option value cannot be used as requested."""


class NoDistanceComputed(RuntimeError):
    """Distances were requested before any neighbour search ran."""


class EmptyDataset(ValueError):
    """A search or reduction was invoked without any series to work on."""


# ---------------------------
# Thread control
# ---------------------------

def set_numba_threads_count(n: int | None):
    if n is not None and n > 0:
        set_num_threads(n)

# ---------------------------
# UCR/UEA loaders (sktime / local files) + z-norm
# ---------------------------

def _concat_len(v) -> int:
    a = np.asarray(v, dtype=np.float64).ravel()
    return int(a.size)

def _nested_concat_row(X_row) -> np.ndarray:
    """Concatenate all columns (variables) for one nested row into 1D."""
    segs = []
    for j in range(X_row.shape[0]):
        v = np.asarray(X_row.iloc[j], dtype=np.float64).ravel()
        segs.append(v)
    return np.concatenate(segs, axis=0) if len(segs) > 1 else segs[0]

def _nested_to_2d_with_pad(X_nested) -> np.ndarray:
    """
    Convert a nested DataFrame to dense (n, Lmax) by concatenating columns per row
    and right-padding with zeros.
    """
    import pandas as pd
    if not isinstance(X_nested, pd.DataFrame):
        X_nested = pd.DataFrame(X_nested)

    lengths = []
    for i in range(len(X_nested)):
        L = 0
        for j in range(X_nested.shape[1]):
            L += _concat_len(X_nested.iat[i, j])
        lengths.append(L)
    Lmax = int(max(lengths)) if lengths else 0

    X = np.zeros((len(X_nested), Lmax), dtype=np.float64)
    for i in range(len(X_nested)):
        rowv = _nested_concat_row(X_nested.iloc[i, :])
        X[i, :rowv.size] = rowv
    return X

def z_normalize(X: np.ndarray, eps: float = 1e-8) -> np.ndarray:
    """
    Per-series z-normalization.
    Accepts (L,) or (N,L); returns same shape.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        return (X - X.mean()) / max(X.std(), eps)
    elif X.ndim == 2:
        mu = X.mean(axis=1, keepdims=True)
        sd = X.std(axis=1, keepdims=True)
        return (X - mu) / np.maximum(sd, eps)
    raise ValueError("Expected (L,) or (N,L) array for z-norm.")

def load_ucr_uea_sktime(
    name: str,
    *,
    z_norm: bool = False,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Fetch the official UCR/UEA splits via sktime and flatten them to (N, L).
    Labels are returned as given by the archive (strings); class encoding is
    left to the caller. Returns: X_train, y_train, X_test, y_test
    """
    from sktime.datasets import load_UCR_UEA_dataset

    X_train_nested, y_train = load_UCR_UEA_dataset(name, split="train", return_X_y=True)
    X_test_nested,  y_test  = load_UCR_UEA_dataset(name, split="test",  return_X_y=True)

    X_train = _nested_to_2d_with_pad(X_train_nested)
    X_test = _nested_to_2d_with_pad(X_test_nested)
    # pad both splits to one global length
    L = max(X_train.shape[1], X_test.shape[1])
    if X_train.shape[1] < L:
        X_train = np.pad(X_train, ((0, 0), (0, L - X_train.shape[1])))
    if X_test.shape[1] < L:
        X_test = np.pad(X_test, ((0, 0), (0, L - X_test.shape[1])))

    if z_norm:
        X_train = z_normalize(X_train)
        X_test = z_normalize(X_test)
    return X_train, np.asarray(y_train), X_test, np.asarray(y_test)

def _ucr_separator(path) -> str:
    """Separator of a UCR text file, judged from its first non-blank line."""
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                if "\t" in line:
                    return "\t"
                return "," if "," in line else r"\s+"
    raise EmptyDataset(f"No series found in {path}")

def load_ucr_file(path) -> Tuple[np.ndarray, np.ndarray]:
    """
    Read a UCR-format text file: one series per line, class label in the
    first column. Tab, comma and whitespace separators are accepted.
    """
    import pandas as pd

    sep = _ucr_separator(path)
    try:
        frame = pd.read_csv(path, header=None, sep=sep, float_precision="round_trip")
    except pd.errors.EmptyDataError as e:
        raise EmptyDataset(f"No series found in {path}") from e
    except pd.errors.ParserError as e:
        raise DimensionMismatch(f"All series in {path} must share one length: {e}") from e
    if frame.shape[0] == 0:
        raise EmptyDataset(f"No series found in {path}")
    # short rows come back padded with NaN
    if frame.shape[1] < 2 or frame.isna().to_numpy().any():
        raise DimensionMismatch(f"All series in {path} must share one length >= 1")

    labels = frame.iloc[:, 0]
    if labels.dtype.kind == "f" and np.all(labels == np.round(labels)):
        labels = labels.astype(np.int64)
    X = frame.iloc[:, 1:].to_numpy(dtype=np.float64)
    return X, labels.to_numpy()

def save_ucr_file(path, X: np.ndarray, y: np.ndarray):
    """Write (X, y) in tab-separated UCR format, label first."""
    import pandas as pd

    frame = pd.DataFrame(np.asarray(X, dtype=np.float64))
    frame.insert(0, "label", np.asarray(y))
    frame.to_csv(path, sep="\t", header=False, index=False)


# ---------------------------
# Small helpers
# ---------------------------

def ensure_float64_2d(X) -> np.ndarray:
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X[None, :] if X.size else X.reshape(0, 0)
    if X.ndim != 2:
        raise DimensionMismatch("Expected a single series (L,) or a dataset (N, L)")
    return X

def ensure_series(x) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    if x.ndim != 1:
        raise DimensionMismatch(f"Expected a 1D series, got shape {x.shape}")
    if x.shape[0] < 1:
        raise DimensionMismatch("A series needs at least one value")
    return x

def check_window_percent(window_percent) -> int:
    wp = int(window_percent)
    if wp < 0 or wp > 100:
        raise InvalidConfiguration(f"window_percent must lie in [0, 100], got {window_percent}")
    return wp

def sakoe_chiba_window(window_percent: int, length: int) -> int:
    """
    Band half-width (in positions) shared by the DTW recurrence and the
    LB_Keogh envelope of a search.
    """
    w = int(window_percent) * int(length) // 100
    return max(0, min(w, int(length) - 1))


# ---------------------------
# Numba primitives
# ---------------------------
# No fastmath below: cells outside the band are +inf and must compare as such.

@njit
def _dtw_banded(x: np.ndarray, y: np.ndarray, w: int, cutoff: float) -> float:
    n = x.shape[0]
    if n == 1:
        d = (x[0] - y[0]) * (x[0] - y[0])
        if d > cutoff:
            return np.inf
        return d

    D = np.full((n, n), np.inf)
    D[0, 0] = (x[0] - y[0]) * (x[0] - y[0])
    for j in range(1, w + 1):
        D[0, j] = (x[j] - y[0]) * (x[j] - y[0]) + D[0, j - 1]
    for i in range(1, w + 1):
        D[i, 0] = (x[0] - y[i]) * (x[0] - y[i]) + D[i - 1, 0]

    for i in range(1, n):
        lo = max(1, i - w)
        hi = min(i + w, n - 1)
        row_min = D[i, 0]
        for j in range(lo, hi + 1):
            c = (x[j] - y[i]) * (x[j] - y[i])
            if j == i + w:
                prev = min(D[i - 1, j - 1], D[i, j - 1])
            elif j == i - w:
                prev = min(D[i - 1, j - 1], D[i - 1, j])
            else:
                prev = min(min(D[i - 1, j - 1], D[i, j - 1]), D[i - 1, j])
            D[i, j] = c + prev
            if D[i, j] < row_min:
                row_min = D[i, j]
        # every warping path crosses row i, and costs only grow from here
        if np.sqrt(row_min) > cutoff:
            return np.inf
    return np.sqrt(D[n - 1, n - 1])

@njit
def _envelope(x: np.ndarray, w: int) -> Tuple[np.ndarray, np.ndarray]:
    n = x.shape[0]
    lower = np.empty(n, dtype=np.float64)
    upper = np.empty(n, dtype=np.float64)
    for i in range(n):
        mn = np.inf
        mx = -np.inf
        for j in range(max(0, i - w), min(i + w, n - 1) + 1):
            v = x[j]
            if v < mn:
                mn = v
            if v > mx:
                mx = v
        lower[i] = mn
        upper[i] = mx
    return lower, upper

@njit
def _lb_keogh(lower: np.ndarray, upper: np.ndarray, c: np.ndarray) -> float:
    s = 0.0
    # last position excluded
    for i in range(c.shape[0] - 1):
        p = c[i]
        if p > upper[i]:
            s += (p - upper[i]) * (p - upper[i])
        elif p < lower[i]:
            s += (p - lower[i]) * (p - lower[i])
    return np.sqrt(s)

@njit
def _euclidean(x: np.ndarray, y: np.ndarray, cutoff: float) -> float:
    lim = cutoff * cutoff
    s = 0.0
    for i in range(x.shape[0]):
        s += (x[i] - y[i]) * (x[i] - y[i])
        if s > lim:
            return np.inf
    return np.sqrt(s)

@njit
def _pruned_nn_scan(
    query: np.ndarray,          # (L,)
    X2d: np.ndarray,            # (n, L)
    lower: np.ndarray,          # (L,)
    upper: np.ndarray,          # (L,)
    w: int,
    exclude: int,               # id to skip, -1 for none
    skip_identical: bool,
    ties: np.ndarray,           # (n,) int64 scratch, filled with result ids
) -> Tuple[float, int]:
    """
    Single-best scan: LB_Keogh first, banded DTW only when the bound is
    strictly below the best distance so far. Improvements reset the result,
    exact ties are appended.
    """
    best = np.inf
    count = 0
    for i in range(X2d.shape[0]):
        if i == exclude:
            continue
        cand = X2d[i]
        lb = _lb_keogh(lower, upper, cand)
        if lb < best:
            d = _dtw_banded(cand, query, w, best)
            if skip_identical and d == 0.0:
                continue
            if d < best:
                best = d
                ties[0] = i
                count = 1
            elif d == best:
                ties[count] = i
                count += 1
    return best, count

@njit(parallel=True)
def _loo_nn_table(X2d: np.ndarray, w: int, skip_identical: bool) -> Tuple[np.ndarray, np.ndarray]:
    """
    Leave-one-out nearest-neighbour sets for every row of X2d.
      best[q]     : best DTW distance of row q to any other row
      edges[q, j] : True when row j is in q's tied nearest set
    """
    n = X2d.shape[0]
    best = np.full(n, np.inf)
    edges = np.zeros((n, n), dtype=np.bool_)
    for q in prange(n):
        lower, upper = _envelope(X2d[q], w)
        ties = np.empty(n, dtype=np.int64)
        b, cnt = _pruned_nn_scan(X2d[q], X2d, lower, upper, w, q, skip_identical, ties)
        best[q] = b
        for t in range(cnt):
            edges[q, ties[t]] = True
    return best, edges


# ---------------------------
# Checked wrappers
# ---------------------------

def compute_envelope(query, window_width: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Lower/upper envelope of `query` for an absolute window width
    (clipped to [0, L-1]).
    """
    q = ensure_series(query)
    w = max(0, min(int(window_width), q.shape[0] - 1))
    return _envelope(q, w)

def lb_keogh(lower, upper, candidate) -> float:
    """LB_Keogh between an envelope and a candidate series (last position excluded)."""
    c = ensure_series(candidate)
    lo = np.asarray(lower, dtype=np.float64)
    up = np.asarray(upper, dtype=np.float64)
    if lo.shape != c.shape or up.shape != c.shape:
        raise DimensionMismatch(
            f"Envelope of length {lo.shape[0]}/{up.shape[0]} does not match candidate of length {c.shape[0]}"
        )
    return float(_lb_keogh(lo, up, c))

def dtw_distance(a, b, window_percent: int = 10, cutoff: float = np.inf) -> float:
    """
    Banded DTW with a Sakoe-Chiba window of `window_percent` percent of the
    series length.

    Length-1 series return the squared difference (no square root). Returns
    +inf when the distance would exceed `cutoff`.
    """
    x = ensure_series(a)
    y = ensure_series(b)
    if x.shape[0] != y.shape[0]:
        raise DimensionMismatch(f"Series lengths differ: {x.shape[0]} vs {y.shape[0]}")
    wp = check_window_percent(window_percent)
    w = sakoe_chiba_window(wp, x.shape[0])
    return float(_dtw_banded(x, y, w, float(cutoff)))
