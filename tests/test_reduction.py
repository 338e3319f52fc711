import numpy as np
import pytest
from numpy.testing import assert_array_equal

from rankreduce.dtw_utils import DimensionMismatch, EmptyDataset, InvalidConfiguration
from rankreduce.reduction_functions import NumerosityReduction, ReductionConfig


def _class_counts(y):
    labels, counts = np.unique(y, return_counts=True)
    return dict(zip(labels.tolist(), counts.tolist()))


def test_twenty_percent_removes_one_series_per_class(two_class_dataset):
    X, y = two_class_dataset
    X_red, y_red = NumerosityReduction(percentage_to_remove=20).fit_resample(X, y)
    assert X_red.shape == (8, X.shape[1])
    assert _class_counts(y_red) == {1: 4, 2: 4}


def test_output_rows_come_from_the_input(two_class_dataset):
    X, y = two_class_dataset
    reducer = NumerosityReduction(percentage_to_remove=40)
    X_red, y_red = reducer.fit_resample(X, y)
    assert_array_equal(X_red, X[reducer.sample_indices_])
    assert_array_equal(y_red, y[reducer.sample_indices_])
    assert len(set(reducer.sample_indices_.tolist())) == X_red.shape[0]


def test_zero_percent_returns_deduplicated_dataset(two_class_dataset):
    X, y = two_class_dataset
    X = np.vstack([X, X[2], X[7]])
    y = np.concatenate([y, [y[2], y[7]]])
    reducer = NumerosityReduction(percentage_to_remove=0)
    X_red, y_red = reducer.fit_resample(X, y)
    assert X_red.shape[0] == 10
    assert_array_equal(reducer.kept_positions_, np.arange(10))
    assert_array_equal(np.sort(reducer.sample_indices_), np.arange(10))


def test_reduction_never_grows_the_dataset(rng):
    X = rng.standard_normal((14, 10))
    y = rng.integers(0, 3, 14)
    for p in (0, 10, 33, 50, 100):
        X_red, _ = NumerosityReduction(percentage_to_remove=p).fit_resample(X, y)
        assert X_red.shape[0] <= X.shape[0]


def test_mislabeled_series_is_removed_first(mislabeled_dataset):
    X, y = mislabeled_dataset
    reducer = NumerosityReduction(percentage_to_remove=20, distance="DTWDistance -W 10")
    X_red, y_red = reducer.fit_resample(X, y)

    assert reducer.records_[10].reverse == [0, 1]
    assert reducer.records_[10].rank < 0
    assert reducer.ranked_.ids()[0] == 10
    assert 10 not in reducer.sample_indices_.tolist()
    assert _class_counts(y_red) == {0: 4, 1: 5}


def test_class_range_limits_the_reduction(mislabeled_dataset):
    X, y = mislabeled_dataset
    # only the second class (1-based index 2) is reduced
    X_red, y_red = NumerosityReduction(percentage_to_remove=50, class_range="2").fit_resample(X, y)
    assert _class_counts(y_red) == {0: 5, 1: 3}

    X_red, y_red = NumerosityReduction(
        percentage_to_remove=100, class_range="2", invert_class_range=True
    ).fit_resample(X, y)
    assert _class_counts(y_red) == {1: 6}


def test_pooled_quota(mislabeled_dataset):
    X, y = mislabeled_dataset
    X_red, _ = NumerosityReduction(percentage_to_remove=50, quota="pooled").fit_resample(X, y)
    assert X_red.shape[0] == 11 - 11 * 50 // 100


def test_runs_are_deterministic(two_class_dataset):
    X, y = two_class_dataset
    a = NumerosityReduction(percentage_to_remove=30)
    b = NumerosityReduction(percentage_to_remove=30)
    a.fit_resample(X, y)
    b.fit_resample(X, y)
    assert [r.id for r in a.priorities_] == [r.id for r in b.priorities_]
    assert_array_equal(a.sample_indices_, b.sample_indices_)


def test_parallel_and_sequential_graphs_agree(rng):
    X = np.round(rng.standard_normal((18, 12)), 1)
    y = rng.integers(0, 2, 18)
    par = NumerosityReduction(percentage_to_remove=25, parallel=True).fit(X, y)
    seq = NumerosityReduction(percentage_to_remove=25, parallel=False).fit(X, y)
    assert [r.nearest for r in par.records_] == [r.nearest for r in seq.records_]
    assert [r.id for r in par.priorities_] == [r.id for r in seq.priorities_]


def test_rank_order_selection_uses_phase_three_sequence(mislabeled_dataset):
    X, y = mislabeled_dataset
    reducer = NumerosityReduction(percentage_to_remove=20, selection_order="rank").fit(X, y)
    ids = reducer.selection_ids()
    assert 10 not in ids
    assert len(ids) == 9


def test_default_selection_walks_the_rank_ordered_list(rng):
    for _ in range(5):
        X = rng.standard_normal((16, 10))
        y = rng.integers(0, 2, 16)
        default = NumerosityReduction(percentage_to_remove=30).fit(X, y)
        by_rank = NumerosityReduction(percentage_to_remove=30, selection_order="rank").fit(X, y)
        assert default.config.selection_order == "rank"
        assert default.selection_ids() == by_rank.selection_ids()


def test_priority_order_is_opt_in(two_class_dataset):
    X, y = two_class_dataset
    reducer = NumerosityReduction(percentage_to_remove=20, selection_order="priority")
    X_red, y_red = reducer.fit_resample(X, y)
    assert _class_counts(y_red) == {1: 4, 2: 4}
    assert sorted(r.id for r in reducer.priorities_) == list(range(10))


def test_tie_break_leaves_contribution_ranks_alone(rng):
    X = np.round(rng.standard_normal((18, 12)), 1)
    y = rng.integers(0, 2, 18)
    reducer = NumerosityReduction(percentage_to_remove=25).fit(X, y)
    # the ranked list still agrees with the ranks stored on its records
    assert reducer.ranked_.ranks() == [r.rank for r in reducer.ranked_]
    assert reducer.ranked_.ranks() == sorted(reducer.ranked_.ranks())
    for rec in reducer.records_:
        assert rec.rank == float(sum(
            1 if reducer.records_[j].label == rec.label else -2 for j in rec.reverse
        ))


def test_class_range_past_the_last_class_is_clamped(mislabeled_dataset):
    X, y = mislabeled_dataset
    _, y_all = NumerosityReduction(percentage_to_remove=50, class_range="1-3").fit_resample(X, y)
    _, y_ref = NumerosityReduction(percentage_to_remove=50, class_range="first-last").fit_resample(X, y)
    assert_array_equal(y_all, y_ref)


def test_euclidean_fallback(mislabeled_dataset):
    X, y = mislabeled_dataset
    reducer = NumerosityReduction(percentage_to_remove=20, distance="EuclideanDistance")
    X_red, y_red = reducer.fit_resample(X, y)
    assert 10 not in reducer.sample_indices_.tolist()
    assert X_red.shape[0] == 9


def test_explicit_classes(two_class_dataset):
    X, y = two_class_dataset
    reducer = NumerosityReduction(percentage_to_remove=100, class_range="first")
    _, y_red = reducer.fit_resample(X, y, classes=[2, 1])
    assert _class_counts(y_red) == {1: 5}
    with pytest.raises(InvalidConfiguration):
        reducer.fit(X, y, classes=[1])


def test_single_series_dataset():
    X_red, y_red = NumerosityReduction(percentage_to_remove=50).fit_resample(np.ones((1, 5)), [3])
    assert X_red.shape == (1, 5)
    assert y_red.tolist() == [3]


def test_errors(two_class_dataset):
    X, y = two_class_dataset
    with pytest.raises(EmptyDataset):
        NumerosityReduction().fit(np.empty((0, 4)), np.empty(0))
    with pytest.raises(DimensionMismatch):
        NumerosityReduction().fit(X, y[:-1])
    with pytest.raises(InvalidConfiguration):
        NumerosityReduction(percentage_to_remove=120)
    with pytest.raises(InvalidConfiguration):
        NumerosityReduction(distance="Cosine")
    with pytest.raises(InvalidConfiguration):
        NumerosityReduction(class_range="x-y")
    with pytest.raises(InvalidConfiguration):
        ReductionConfig(selection_order="random")
    with pytest.raises(RuntimeError):
        NumerosityReduction().resample()


def test_from_config_round_trip():
    config = ReductionConfig(percentage_to_remove=30, class_range="2-last", quota="pooled", parallel=False)
    reducer = NumerosityReduction.from_config(config)
    assert reducer.config == config
    assert reducer.distance_function.window_percent == 10
