# stats_utils.py
"""
Effect sizes and two-sample t-test power calculations.

Cohen's d is computed per feature between two label groups of a sample table
(see utils.reshape_to_samples).  Power uses the noncentral t distribution for
a two-sided, equal-n, independent two-sample t-test:

    df    = 2n - 2
    ncp   = d * sqrt(n / 2)
    power = P(T > t_crit) + P(T < -t_crit),  T ~ nct(df, ncp)
"""

import math

import numpy as np
import pandas as pd
from scipy import optimize, stats

from utils import LABEL_COL, InsufficientDataError, feature_columns

DEFAULT_ALPHA = 0.05
CONVENTIONAL_EFFECTS = (0.2, 0.5, 0.8, 1.0)
MAX_N = 10_000_000


# ---------------------------------------------------------------------------
# Effect sizes
# ---------------------------------------------------------------------------

def _pooled_sd(x, y):
    """Pooled SD of two samples from their unbiased variances."""
    n1, n2 = len(x), len(y)
    return math.sqrt(((n1 - 1) * x.var(ddof=1) + (n2 - 1) * y.var(ddof=1)) / (n1 + n2 - 2))


def cohens_d(x, y):
    """
    Cohen's d for two independent samples: (mean(x) - mean(y)) / pooled SD.

    The pooled SD weights the unbiased (ddof=1) group variances by their
    degrees of freedom.  Missing values are dropped.  Returns NaN when the
    pooled SD is zero.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    x, y = x[~np.isnan(x)], y[~np.isnan(y)]
    n1, n2 = len(x), len(y)
    if n1 < 2 or n2 < 2:
        raise InsufficientDataError(
            f"Cohen's d needs at least 2 observations per group (got {n1} and {n2})."
        )
    pooled_sd = _pooled_sd(x, y)
    if pooled_sd == 0:
        return np.nan
    return (x.mean() - y.mean()) / pooled_sd


def bh_correction(pvals):
    """Return BH-adjusted p-values (q-values); NaN entries are left as NaN."""
    pvals = np.asarray(pvals, dtype=float)
    qvals = np.full_like(pvals, np.nan)
    ok = ~np.isnan(pvals)
    p = pvals[ok]
    n = len(p)
    if n == 0:
        return qvals
    order = np.argsort(p)
    ranked = np.empty_like(p)
    ranked[order] = np.arange(1, n + 1)
    q = p * n / ranked
    # enforce monotonicity (step-up)
    q[order[::-1]] = np.minimum.accumulate(q[order[::-1]])
    qvals[ok] = np.clip(q, 0.0, 1.0)
    return qvals


def resolve_groups(samples, group1=None, group2=None):
    """Pick the two labels to compare; defaults to the two labels in sorted order."""
    present = sorted(samples[LABEL_COL].unique())
    if group1 is None and group2 is None:
        if len(present) != 2:
            raise InsufficientDataError(
                f"Expected exactly two group labels, found {len(present)}: {present}"
            )
        return present[0], present[1]
    if group1 is None or group2 is None:
        raise ValueError("Give both group1 and group2, or neither.")
    if group1 == group2:
        raise ValueError(f"group1 and group2 are both '{group1}'.")
    missing = [g for g in (group1, group2) if g not in present]
    if missing:
        raise InsufficientDataError(f"Group label(s) {missing} not present; labels are {present}")
    return group1, group2


def feature_effect_sizes(samples, group1=None, group2=None, skip_insufficient=False):
    """
    Cohen's d of every feature between two label groups.

    Returns a DataFrame indexed by feature_id with cohen_d (group1 - group2),
    abs_d, group means and sizes, pooled SD, Welch t-test p-value and BH
    q-value.  Features lacking two observations in a group raise
    InsufficientDataError, or are skipped with a warning if skip_insufficient.
    """
    group1, group2 = resolve_groups(samples, group1, group2)
    in1 = samples[LABEL_COL] == group1
    in2 = samples[LABEL_COL] == group2

    rows = []
    skipped = []
    for feature in feature_columns(samples):
        x = samples.loc[in1, feature].dropna().to_numpy(dtype=float)
        y = samples.loc[in2, feature].dropna().to_numpy(dtype=float)
        try:
            d = cohens_d(x, y)
        except InsufficientDataError as e:
            if not skip_insufficient:
                raise InsufficientDataError(f"Feature {feature}: {e}")
            skipped.append(feature)
            continue
        n1, n2 = len(x), len(y)
        pooled_sd = _pooled_sd(x, y)
        if pooled_sd > 0:
            _, p = stats.ttest_ind(x, y, equal_var=False)
        else:
            p = np.nan
        rows.append({
            "feature_id": feature,
            "cohen_d": d,
            "abs_d": abs(d),
            "mean1": x.mean(),
            "mean2": y.mean(),
            "n1": n1,
            "n2": n2,
            "sd_pooled": pooled_sd,
            "p_value": p,
        })

    if skipped:
        print(f"  WARNING: skipped {len(skipped)} features with <2 observations "
              f"in a group: {skipped[:5]}", flush=True)

    columns = ["feature_id", "cohen_d", "abs_d", "mean1", "mean2", "n1", "n2",
               "sd_pooled", "p_value"]
    effects = pd.DataFrame(rows, columns=columns).set_index("feature_id")
    effects["q_value"] = bh_correction(effects["p_value"].to_numpy())
    effects.attrs["group1"] = group1
    effects.attrs["group2"] = group2
    return effects


def representative_effect_size(effects):
    """Mean |d| over features with a defined effect size."""
    if isinstance(effects, pd.DataFrame):
        effects = effects["cohen_d"]
    abs_d = np.abs(np.asarray(effects, dtype=float))
    abs_d = abs_d[~np.isnan(abs_d)]
    if len(abs_d) == 0:
        raise InsufficientDataError("No features with a defined effect size.")
    return float(abs_d.mean())


# ---------------------------------------------------------------------------
# Power for the two-sample t-test
# ---------------------------------------------------------------------------

def _check_alpha(alpha):
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")


def _check_power(power_target):
    if not 0 < power_target < 1:
        raise ValueError(f"power_target must be in (0, 1), got {power_target}")


def achieved_power(effect_size, n, alpha=DEFAULT_ALPHA):
    """Power of a two-sided two-sample t-test with n observations per group."""
    _check_alpha(alpha)
    if not np.isfinite(effect_size):
        raise ValueError(f"effect_size must be finite, got {effect_size}")
    if n < 2:
        raise ValueError(f"n per group must be at least 2, got {n}")
    df = 2 * n - 2
    ncp = effect_size * math.sqrt(n / 2.0)
    t_crit = stats.t.ppf(1 - alpha / 2, df)
    power = stats.nct.sf(t_crit, df, ncp) + stats.nct.cdf(-t_crit, df, ncp)
    return float(min(1.0, max(0.0, power)))


def solve_n(effect_size, power_target=0.8, alpha=DEFAULT_ALPHA):
    """Continuous n per group at which the power equals power_target."""
    _check_alpha(alpha)
    _check_power(power_target)
    if effect_size == 0 or not np.isfinite(effect_size):
        raise ValueError(f"effect_size must be finite and non-zero, got {effect_size}")
    if power_target <= alpha:
        raise ValueError(f"power_target ({power_target}) must exceed alpha ({alpha})")

    def gap(n):
        return achieved_power(effect_size, n, alpha) - power_target

    low = 2.0
    if gap(low) >= 0:
        return low
    high = 4.0
    while gap(high) < 0:
        low, high = high, high * 2
        if high > MAX_N:
            raise ValueError(f"No n up to {MAX_N} reaches power {power_target} "
                             f"for effect size {effect_size}")
    return optimize.brentq(gap, low, high, xtol=1e-10, rtol=1e-12)


def required_n(effect_size, power_target=0.8, alpha=DEFAULT_ALPHA):
    """
    Smallest whole number of samples per group with power >= power_target.

    Starts from the continuous solution and steps to the integer boundary so
    that achieved_power(required_n) >= power_target and
    achieved_power(required_n - 1) < power_target.
    """
    n = max(2, int(math.ceil(solve_n(effect_size, power_target, alpha))))
    while n > 2 and achieved_power(effect_size, n - 1, alpha) >= power_target:
        n -= 1
    while achieved_power(effect_size, n, alpha) < power_target:
        n += 1
    return n


def detectable_effect(n, power_target=0.8, alpha=DEFAULT_ALPHA):
    """Minimum |d| detectable with the target power at n samples per group."""
    _check_alpha(alpha)
    _check_power(power_target)
    if n < 2:
        raise ValueError(f"n per group must be at least 2, got {n}")
    if power_target <= alpha:
        raise ValueError(f"power_target ({power_target}) must exceed alpha ({alpha})")

    def gap(d):
        return achieved_power(d, n, alpha) - power_target

    high = 1.0
    while gap(high) < 0:
        high *= 2
    return optimize.brentq(gap, 0.0, high, xtol=1e-10)


def power_table(effect_sizes, sample_sizes, alpha=DEFAULT_ALPHA):
    """Achieved power for every (effect size, n per group) pair, long format."""
    rows = []
    for d in effect_sizes:
        for n in sample_sizes:
            rows.append({
                "effect_size": float(d),
                "n_per_group": int(n),
                "alpha": alpha,
                "power": achieved_power(d, n, alpha),
            })
    return pd.DataFrame(rows, columns=["effect_size", "n_per_group", "alpha", "power"])


def sample_size_table(effect_sizes, power_targets=(0.8,), alpha=DEFAULT_ALPHA):
    """Required n per group for every (effect size, target power) pair."""
    rows = []
    for d in effect_sizes:
        for target in power_targets:
            n = required_n(d, target, alpha)
            rows.append({
                "effect_size": float(d),
                "target_power": target,
                "alpha": alpha,
                "n_per_group": n,
                "n_total": 2 * n,
                "achieved_power": achieved_power(d, n, alpha),
            })
    return pd.DataFrame(rows, columns=["effect_size", "target_power", "alpha",
                                       "n_per_group", "n_total", "achieved_power"])
