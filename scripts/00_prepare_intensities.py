# 00_prepare_intensities.py
"""
Prepare LC-MS Intensities

Loads the feature x sample intensity CSV (one row carries the group label of
each sample), reshapes it to one row per sample, and divides each sample by
its median intensity.

Inputs:
  data/intensities.csv

Outputs:
  results/prepared/sample_table.tsv             raw intensities + label
  results/prepared/normalized_sample_table.tsv  median-normalized + label
  results/prepared/sample_medians.tsv
  results/prepared/intensity_distributions.png
"""

import argparse
import os
import sys

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

sys.path.insert(0, os.path.dirname(__file__))
from utils import (LABEL_COL, PipelineError, feature_columns, log10_intensities,
                   median_normalize, read_intensity_csv, reshape_to_samples,
                   row_medians, write_sample_table)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description=__doc__,
                                formatter_class=argparse.RawDescriptionHelpFormatter)
    p.add_argument("--input", default="data/intensities.csv",
                   help="Feature x sample intensity CSV with a group label row.")
    p.add_argument("--label-row", default="Label",
                   help="Name of the row holding each sample's group label.")
    p.add_argument("--on-zero-median", choices=["raise", "drop"], default="raise",
                   help="Abort on samples with zero median intensity, or drop them.")
    p.add_argument("--out-dir", default="results/prepared/")
    return p.parse_args(argv)


def plot_distributions(raw, normalized, out_path):
    """Boxplots of log10 intensity per sample, before and after normalization."""
    fig, axes = plt.subplots(1, 2, figsize=(max(8, 0.6 * len(raw) * 2), 5), sharey=False)
    for ax, samples, title in [
        (axes[0], raw, "Raw intensities"),
        (axes[1], normalized, "Median-normalized"),
    ]:
        logged = log10_intensities(samples)
        data = [row[~np.isnan(row)] for row in logged.to_numpy()]
        ax.boxplot(data, showfliers=False)
        ax.set_xticks(range(1, len(samples) + 1))
        ax.set_xticklabels([f"{sid}\n({lab})" for sid, lab in
                            zip(samples.index, samples[LABEL_COL])],
                           rotation=90, fontsize=7)
        ax.set_title(title)
        ax.set_ylabel("log10 intensity")
    fig.tight_layout()
    fig.savefig(out_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def main(argv=None):
    args = parse_args(argv)
    os.makedirs(args.out_dir, exist_ok=True)

    try:
        print(f"Loading intensity table {args.input} ...", flush=True)
        table = read_intensity_csv(args.input)
        print(f"  {table.shape[0]} rows x {table.shape[1]} samples loaded.", flush=True)

        print("Reshaping to samples x features ...", flush=True)
        samples = reshape_to_samples(table, label_row=args.label_row)
        features = feature_columns(samples)
        n_missing = int(samples[features].isna().sum().sum())
        print(f"  {len(samples)} samples x {len(features)} features, "
              f"{n_missing} missing values.", flush=True)
        for label, count in samples[LABEL_COL].value_counts().sort_index().items():
            print(f"    {label}: {count} samples", flush=True)

        print("Median-normalizing each sample ...", flush=True)
        medians = row_medians(samples)
        normalized = median_normalize(samples, on_zero=args.on_zero_median)
    except PipelineError as e:
        sys.exit(f"ERROR: {e}")

    raw_path = os.path.join(args.out_dir, "sample_table.tsv")
    write_sample_table(samples, raw_path)
    print(f"Wrote {raw_path}", flush=True)

    norm_path = os.path.join(args.out_dir, "normalized_sample_table.tsv")
    write_sample_table(normalized, norm_path)
    print(f"Wrote {norm_path} ({len(normalized)} samples)", flush=True)

    med_df = pd.DataFrame({
        LABEL_COL: samples[LABEL_COL],
        "median_intensity": medians,
        "kept": samples.index.isin(normalized.index),
    })
    med_path = os.path.join(args.out_dir, "sample_medians.tsv")
    med_df.to_csv(med_path, sep="\t")
    print(f"Wrote {med_path}", flush=True)

    fig_path = os.path.join(args.out_dir, "intensity_distributions.png")
    plot_distributions(samples.loc[normalized.index], normalized, fig_path)
    print(f"Wrote {fig_path}", flush=True)

    print("\n--- Sample medians ---", flush=True)
    for sid, row in med_df.iterrows():
        print(f"  {sid:>12s} ({row[LABEL_COL]}): median={row['median_intensity']:.4g}", flush=True)

    print("\nDone.", flush=True)


if __name__ == "__main__":
    main()
