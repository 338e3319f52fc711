import math

import numpy as np
import pytest


def classic_dtw(a, b) -> float:
    """Unconstrained DTW recurrence, square root of the accumulated squared cost."""
    n, m = len(a), len(b)
    D = [[math.inf] * (m + 1) for _ in range(n + 1)]
    D[0][0] = 0.0
    for i in range(1, n + 1):
        for j in range(1, m + 1):
            c = (a[i - 1] - b[j - 1]) ** 2
            D[i][j] = c + min(D[i - 1][j - 1], D[i - 1][j], D[i][j - 1])
    return math.sqrt(D[n][m])


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def two_class_dataset(rng):
    """10 noisy sine/cosine series of length 24, 5 per class."""
    t = np.linspace(0, 2 * np.pi, 24)
    X = np.vstack(
        [np.sin(t) + 0.1 * rng.standard_normal(24) for _ in range(5)]
        + [np.cos(t) + 0.1 * rng.standard_normal(24) for _ in range(5)]
    )
    y = np.array([1] * 5 + [2] * 5)
    return X, y


@pytest.fixture
def mislabeled_dataset():
    """
    Constant series: class 0 at 0,2,4,6,8 and class 1 at 100..108, plus a
    class-1 series at 1 sitting inside class 0 (row 10).
    """
    L = 8
    values = [0, 2, 4, 6, 8, 100, 102, 104, 106, 108, 1]
    X = np.vstack([np.full(L, float(v)) for v in values])
    y = np.array([0] * 5 + [1] * 5 + [1])
    return X, y
