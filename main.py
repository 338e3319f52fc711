# -----------------------
# How to run:
#
# 1) UCR archive dataset (fetched through sktime), reduce every class by 20%:
#   python main.py --dataset GunPoint --percent 20 --distance "DTWDistance -W 10"
#
# 2) Local UCR-format files, reduce only the first class, keep the result:
#   python main.py --train_file data/train.tsv --test_file data/test.tsv \
#     --percent 30 --classes first --out_file results/train_reduced.tsv
# -----------------------

from __future__ import annotations
import argparse, time
from pathlib import Path
import csv

import numpy as np
from sklearn.metrics import accuracy_score

from rankreduce.dtw_utils import (
    load_ucr_uea_sktime,
    load_ucr_file,
    save_ucr_file,
    z_normalize,
    set_numba_threads_count,
)
from rankreduce.dtw_functions import predict_1nn
from rankreduce.reduction_functions import NumerosityReduction, ReductionConfig

# -----------------------
# Utilities
# -----------------------
def load_data(args):
    if args.dataset:
        return load_ucr_uea_sktime(args.dataset, z_norm=bool(args.z_norm))
    X_train, y_train = load_ucr_file(args.train_file)
    X_test, y_test = (None, None)
    if args.test_file:
        X_test, y_test = load_ucr_file(args.test_file)
    if args.z_norm:
        X_train = z_normalize(X_train)
        X_test = z_normalize(X_test) if X_test is not None else None
    return X_train, y_train, X_test, y_test

def _summarize_classes(prefix: str, y: np.ndarray):
    labels, counts = np.unique(y, return_counts=True)
    parts = " ".join(f"{lab}:{cnt}" for lab, cnt in zip(labels.tolist(), counts.tolist()))
    print(f"{prefix} n={y.shape[0]} | per-class {parts}")

def evaluate(X_train, y_train, X_test, y_test, reducer: NumerosityReduction) -> float:
    pred = predict_1nn(X_train, y_train, X_test, reducer.distance_function)
    return float(accuracy_score(np.asarray(y_test).astype(str), pred.astype(str)))

# -----------------------
# CSV helper
# -----------------------
def _append_result_csv(args, config: ReductionConfig, n_before: int, n_dedup: int, n_after: int,
                       acc_before: float | None, acc_after: float | None, elapsed_s: float):
    results_dir = Path(args.results_dir)
    results_dir.mkdir(parents=True, exist_ok=True)
    out_csv = results_dir / "reduction_results.csv"

    row = {
        "dataset": args.dataset or str(args.train_file),
        "percent": str(config.percentage_to_remove),
        "classes": config.class_range,
        "distance": config.distance,
        "quota": config.quota,
        "order": config.selection_order,
        "n_before": str(n_before),
        "n_dedup": str(n_dedup),
        "n_after": str(n_after),
        "acc_before": "" if acc_before is None else f"{acc_before:.6f}",
        "acc_after": "" if acc_after is None else f"{acc_after:.6f}",
        "elapsed_sec": f"{elapsed_s:.2f}",
    }

    exists = out_csv.exists()
    with out_csv.open("a", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(row.keys()))
        if not exists:
            writer.writeheader()
        writer.writerow(row)

# -----------------------
# Main
# -----------------------
def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Rank-based numerosity reduction for 1-NN DTW classification.")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--dataset", type=str, default=None)
    src.add_argument("--train_file", type=str, default=None)
    ap.add_argument("--test_file", type=str, default=None)

    # Reduction
    ap.add_argument("--percent", type=int, default=10)                 # percentage of each class to remove
    ap.add_argument("--classes", type=str, default="first-last")      # 1-based class indices to reduce
    ap.add_argument("--invert_classes", type=int, default=0)
    ap.add_argument("--distance", type=str, default="DTWDistance -W 10")
    ap.add_argument("--quota", type=str, choices=["per_class", "pooled"], default="per_class")
    ap.add_argument("--order", type=str, choices=["rank", "priority"], default="rank")

    # Runtime
    ap.add_argument("--threads", type=int, default=0)
    ap.add_argument("--parallel", type=int, default=1)
    ap.add_argument("--z_norm", type=int, default=0)
    ap.add_argument("--evaluate", type=int, default=1)

    # Output
    ap.add_argument("--out_file", type=str, default=None)
    ap.add_argument("--results_dir", type=str, default="results")
    return ap

def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.threads and args.threads > 0:
        set_numba_threads_count(args.threads)

    config = ReductionConfig(
        percentage_to_remove=args.percent,
        class_range=args.classes,
        invert_class_range=bool(args.invert_classes),
        distance=args.distance,
        quota=args.quota,
        selection_order=args.order,
        parallel=bool(args.parallel),
    )
    print(f"[config] source={args.dataset or args.train_file} | percent={config.percentage_to_remove} "
          f"classes={config.class_range}{' (inverted)' if config.invert_class_range else ''} "
          f"| distance='{config.distance}' | quota={config.quota} order={config.selection_order} "
          f"| parallel={int(config.parallel)} threads={args.threads}")

    # 1) Load data
    X_train, y_train, X_test, y_test = load_data(args)
    print(f"[data] Train {X_train.shape} | Test {None if X_test is None else X_test.shape} "
          f"| Classes={np.unique(y_train).size}")
    _summarize_classes("[data] train", y_train)

    # 2) Reduce
    wall0 = time.time()
    reducer = NumerosityReduction.from_config(config)
    X_red, y_red = reducer.fit_resample(X_train, y_train)
    elapsed = time.time() - wall0
    n_dedup = int(reducer.kept_positions_.size)
    print(f"[reduce] {X_train.shape[0]} -> {n_dedup} after duplicates -> {X_red.shape[0]} kept "
          f"| {elapsed:.2f}s")
    _summarize_classes("[reduce] kept", y_red)

    # 3) Optional 1-NN evaluation
    acc_before = acc_after = None
    if args.evaluate and X_test is not None:
        t0 = time.time()
        acc_before = evaluate(X_train, y_train, X_test, y_test, reducer)
        acc_after = evaluate(X_red, y_red, X_test, y_test, reducer)
        print(f"[eval] 1-NN test_acc full={acc_before:.4f} | reduced={acc_after:.4f} "
              f"| {time.time() - t0:.2f}s")

    # 4) Outputs
    if args.out_file:
        Path(args.out_file).parent.mkdir(parents=True, exist_ok=True)
        save_ucr_file(args.out_file, X_red, y_red)
        print(f"[final] wrote {X_red.shape[0]} series to {args.out_file}")

    _append_result_csv(
        args, config,
        n_before=int(X_train.shape[0]), n_dedup=n_dedup, n_after=int(X_red.shape[0]),
        acc_before=acc_before, acc_after=acc_after, elapsed_s=float(elapsed),
    )
    print(f"[final] kept {X_red.shape[0]}/{X_train.shape[0]} series")
    return X_red, y_red

if __name__ == "__main__":
    main()
