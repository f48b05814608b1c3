# 02_power_analysis.py
"""
Power and Sample Size Projection

Uses the observed mean |Cohen's d| together with conventional effect sizes
(0.2, 0.5, 0.8, 1.0) to project the per-group sample size a follow-up study
needs, for a two-sided two-sample t-test at alpha=0.05.  Also tabulates power
over a range of group sizes and the minimum detectable effect at each size.

Inputs:
  results/effect_sizes/effect_size_summary.tsv

Outputs:
  results/power_analysis/samples_needed.tsv
  results/power_analysis/power_grid.tsv
  results/power_analysis/detectable_effects.tsv
  results/power_analysis/power_curves.png
"""

import argparse
import os
import sys

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

sys.path.insert(0, os.path.dirname(__file__))
from stats_utils import (CONVENTIONAL_EFFECTS, detectable_effect, power_table,
                         sample_size_table)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description=__doc__,
                                formatter_class=argparse.RawDescriptionHelpFormatter)
    p.add_argument("--summary", default="results/effect_sizes/effect_size_summary.tsv",
                   help="Effect size summary with a mean_abs_d column.")
    p.add_argument("--effect-size", type=float, default=None,
                   help="Use this effect size instead of the observed mean |d|.")
    p.add_argument("--alpha", type=float, default=0.05)
    p.add_argument("--power", type=float, nargs="+", default=[0.8, 0.9],
                   help="Target power level(s).")
    p.add_argument("--n-min", type=int, default=2)
    p.add_argument("--n-max", type=int, default=100)
    p.add_argument("--out-dir", default="results/power_analysis/")
    return p.parse_args(argv)


def observed_effect_size(args):
    if args.effect_size is not None:
        return args.effect_size
    try:
        summary = pd.read_csv(args.summary, sep="\t")
    except FileNotFoundError:
        sys.exit(f"ERROR: effect size summary not found: {args.summary}")
    except (OSError, pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        sys.exit(f"ERROR: could not read {args.summary}: {e}")
    if "mean_abs_d" not in summary.columns or summary.empty:
        sys.exit(f"ERROR: {args.summary} has no mean_abs_d value.")
    try:
        return float(summary["mean_abs_d"].iloc[0])
    except (TypeError, ValueError):
        sys.exit(f"ERROR: {args.summary} has a non-numeric mean_abs_d value.")


def main(argv=None):
    args = parse_args(argv)
    os.makedirs(args.out_dir, exist_ok=True)
    if args.n_min < 2 or args.n_max < args.n_min:
        sys.exit(f"ERROR: need 2 <= n-min <= n-max (got {args.n_min}, {args.n_max}).")

    d_obs = observed_effect_size(args)
    print(f"Observed representative effect size: d={d_obs:.4f}", flush=True)
    if d_obs <= 0 or not np.isfinite(d_obs):
        sys.exit(f"ERROR: effect size must be positive and finite, got {d_obs}")

    effect_sizes = sorted(set(CONVENTIONAL_EFFECTS) | {round(d_obs, 4)})
    sample_sizes = np.arange(args.n_min, args.n_max + 1)

    # 1. Samples needed per effect size
    print("Solving required sample size per group ...", flush=True)
    try:
        needed = sample_size_table(effect_sizes, args.power, alpha=args.alpha)
    except ValueError as e:
        sys.exit(f"ERROR: {e}")
    needed["source"] = np.where(np.isclose(needed["effect_size"], round(d_obs, 4)),
                                "observed", "conventional")
    needed_path = os.path.join(args.out_dir, "samples_needed.tsv")
    needed.to_csv(needed_path, sep="\t", index=False)
    print(f"  Wrote {needed_path} ({len(needed)} rows)", flush=True)

    # 2. Power over the range of group sizes
    print(f"Computing power for n={args.n_min}..{args.n_max} per group ...", flush=True)
    grid = power_table(effect_sizes, sample_sizes, alpha=args.alpha)
    grid_path = os.path.join(args.out_dir, "power_grid.tsv")
    grid.to_csv(grid_path, sep="\t", index=False)
    print(f"  Wrote {grid_path} ({len(grid)} rows)", flush=True)

    # 3. Minimum detectable effect per group size
    print("Solving minimum detectable effect per group size ...", flush=True)
    mde_rows = []
    try:
        for target in args.power:
            for n in sample_sizes:
                mde_rows.append({
                    "n_per_group": int(n),
                    "target_power": target,
                    "alpha": args.alpha,
                    "min_detectable_d": detectable_effect(n, target, alpha=args.alpha),
                })
    except ValueError as e:
        sys.exit(f"ERROR: {e}")
    mde = pd.DataFrame(mde_rows)
    mde_path = os.path.join(args.out_dir, "detectable_effects.tsv")
    mde.to_csv(mde_path, sep="\t", index=False)
    print(f"  Wrote {mde_path} ({len(mde)} rows)", flush=True)

    # 4. Power curves
    fig, ax = plt.subplots(figsize=(7, 5))
    for d in effect_sizes:
        sub = grid[grid["effect_size"] == d]
        style = "-" if np.isclose(d, round(d_obs, 4)) else "--"
        label = f"d = {d:.3f} (observed)" if style == "-" else f"d = {d:.1f}"
        ax.plot(sub["n_per_group"], sub["power"], style, label=label)
    for target in args.power:
        ax.axhline(target, color="grey", linewidth=0.8, linestyle=":")
    ax.set_xlabel("Samples per group")
    ax.set_ylabel("Power")
    ax.set_ylim(0, 1.02)
    ax.set_title(f"Two-sample t-test power (two-sided, alpha={args.alpha})")
    ax.legend(fontsize=8)
    fig_path = os.path.join(args.out_dir, "power_curves.png")
    fig.savefig(fig_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    print(f"  Wrote {fig_path}", flush=True)

    print("\n=== Samples needed per group ===", flush=True)
    for _, row in needed.iterrows():
        print(f"  d={row['effect_size']:.3f} ({row['source']}), power={row['target_power']:.2f}: "
              f"n={row['n_per_group']} per group (achieved {row['achieved_power']:.3f})",
              flush=True)

    print("\nDone.", flush=True)


if __name__ == "__main__":
    main()
