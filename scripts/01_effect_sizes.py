# 01_effect_sizes.py
"""
Per-feature Effect Sizes

Computes Cohen's d (pooled SD) for every feature between the two sample
groups of the median-normalized table, with Welch t-test p-values and
Benjamini-Hochberg q-values.  The mean |d| over all features is reported as
the representative experimental effect size for the power analysis.

Inputs:
  results/prepared/normalized_sample_table.tsv

Outputs:
  results/effect_sizes/effect_sizes.tsv
  results/effect_sizes/effect_size_summary.tsv
  results/effect_sizes/effect_size_histogram.png
"""

import argparse
import os
import sys

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

sys.path.insert(0, os.path.dirname(__file__))
from stats_utils import feature_effect_sizes, representative_effect_size
from utils import LABEL_COL, PipelineError, read_sample_table


def parse_args(argv=None):
    p = argparse.ArgumentParser(description=__doc__,
                                formatter_class=argparse.RawDescriptionHelpFormatter)
    p.add_argument("--table", default="results/prepared/normalized_sample_table.tsv")
    p.add_argument("--group1", default=None,
                   help="Label of the first group (d = group1 - group2).")
    p.add_argument("--group2", default=None,
                   help="Label of the second group.")
    p.add_argument("--skip-insufficient", action="store_true",
                   help="Skip features with <2 observations in a group instead of aborting.")
    p.add_argument("--out-dir", default="results/effect_sizes/")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    os.makedirs(args.out_dir, exist_ok=True)

    try:
        print(f"Loading {args.table} ...", flush=True)
        samples = read_sample_table(args.table)
        print(f"  {len(samples)} samples x {samples.shape[1] - 1} features.", flush=True)

        print("Computing Cohen's d per feature ...", flush=True)
        effects = feature_effect_sizes(samples, group1=args.group1, group2=args.group2,
                                       skip_insufficient=args.skip_insufficient)
        mean_abs_d = representative_effect_size(effects)
    except PipelineError as e:
        sys.exit(f"ERROR: {e}")

    group1, group2 = effects.attrs["group1"], effects.attrs["group2"]
    n1 = int((samples[LABEL_COL] == group1).sum())
    n2 = int((samples[LABEL_COL] == group2).sum())
    print(f"  {group1} (n={n1}) vs {group2} (n={n2}): {len(effects)} features.", flush=True)

    out_path = os.path.join(args.out_dir, "effect_sizes.tsv")
    effects.sort_values("abs_d", ascending=False).to_csv(out_path, sep="\t")
    print(f"Wrote {out_path} ({len(effects)} rows)", flush=True)

    abs_d = effects["abs_d"].dropna()
    summary = pd.DataFrame([{
        "group1": group1,
        "group2": group2,
        "n1": n1,
        "n2": n2,
        "n_features": len(effects),
        "n_defined": len(abs_d),
        "mean_abs_d": mean_abs_d,
        "median_abs_d": abs_d.median(),
        "sd_abs_d": abs_d.std(),
        "max_abs_d": abs_d.max(),
        "n_small": int(((abs_d >= 0.2) & (abs_d < 0.5)).sum()),
        "n_medium": int(((abs_d >= 0.5) & (abs_d < 0.8)).sum()),
        "n_large": int((abs_d >= 0.8).sum()),
        "n_q_below_0.05": int((effects["q_value"] < 0.05).sum()),
    }])
    summary_path = os.path.join(args.out_dir, "effect_size_summary.tsv")
    summary.to_csv(summary_path, sep="\t", index=False)
    print(f"Wrote {summary_path}", flush=True)

    fig, ax = plt.subplots(figsize=(6, 4))
    ax.hist(effects["cohen_d"].dropna(), bins=40, color="steelblue", edgecolor="white")
    ax.axvline(mean_abs_d, color="firebrick", linestyle="--", label=f"mean |d| = {mean_abs_d:.3f}")
    ax.axvline(-mean_abs_d, color="firebrick", linestyle="--")
    ax.set_xlabel(f"Cohen's d ({group1} - {group2})")
    ax.set_ylabel("Features")
    ax.legend()
    fig_path = os.path.join(args.out_dir, "effect_size_histogram.png")
    fig.savefig(fig_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    print(f"Wrote {fig_path}", flush=True)

    print("\n=== Effect size summary ===", flush=True)
    row = summary.iloc[0]
    print(f"  mean |d| = {mean_abs_d:.4f}  median |d| = {row['median_abs_d']:.4f}", flush=True)
    print(f"  small: {row['n_small']}  medium: {row['n_medium']}  large: {row['n_large']}", flush=True)
    print("\n--- Top features by |d| ---", flush=True)
    for fid, r in effects.sort_values("abs_d", ascending=False).head(10).iterrows():
        print(f"  {fid:>24s}: d={r['cohen_d']:+.3f}  q={r['q_value']:.2e}", flush=True)
    if np.isnan(effects["cohen_d"]).any():
        print(f"  WARNING: {int(np.isnan(effects['cohen_d']).sum())} features have zero "
              f"variance and no defined d.", flush=True)

    print("\nDone.", flush=True)


if __name__ == "__main__":
    main()
