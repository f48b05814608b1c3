# utils.py
"""Shared utility functions for intensity table I/O, reshaping and normalization."""

from collections import namedtuple

import numpy as np
import pandas as pd

LABEL_COL = "label"
MISSING_TOKENS = ("", "na", "nan", "n/a", "null", "none")

SampleRecord = namedtuple("SampleRecord", ["sample_id", "label", "features"])


class PipelineError(Exception):
    """Base class for errors that abort the pipeline."""


class ParseError(PipelineError):
    pass


class TypeConversionError(PipelineError):
    pass


class InsufficientDataError(PipelineError):
    pass


class ZeroMedianError(PipelineError):
    pass


def read_intensity_csv(path, sep=None):
    """
    Load a feature x sample intensity table and return it as raw strings.

    The first column holds feature identifiers (e.g. "mz/rt" composites), the
    header row holds sample identifiers, and one row carries the group label of
    each sample.  Cells are kept as strings so that numeric conversion happens
    in reshape_to_samples, after the label row has been split off.
    """
    path = str(path)
    if sep is None:
        sep = "\t" if path.endswith((".tsv", ".txt")) else ","
    try:
        df = pd.read_csv(path, sep=sep, index_col=0, dtype=str,
                         keep_default_na=False, skip_blank_lines=True)
    except FileNotFoundError:
        raise ParseError(f"Input file not found: {path}")
    except OSError as e:
        raise ParseError(f"Could not read {path}: {e}")
    except pd.errors.EmptyDataError:
        raise ParseError(f"Input file is empty: {path}")
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ParseError(f"Could not parse {path}: {e}")

    if df.shape[1] == 0 or df.shape[0] == 0:
        raise ParseError(f"No sample columns or feature rows found in {path}")

    df.index = df.index.astype(str).str.strip()
    df.index.name = "feature_id"
    # pandas renames repeated headers to "name.1"; check the raw header instead
    header = pd.read_csv(path, sep=sep, header=None, nrows=1, dtype=str,
                         keep_default_na=False).iloc[0, 1:]
    header = [str(c).strip() for c in header]
    dup_samples = sorted({c for c in header if header.count(c) > 1})
    if dup_samples:
        raise ParseError(f"Duplicated sample identifiers in {path}: {dup_samples}")
    df.columns = [str(c).strip() for c in df.columns]
    dup_features = df.index[df.index.duplicated()].unique().tolist()
    if dup_features:
        raise ParseError(f"Duplicated feature identifiers in {path}: {dup_features[:5]}")
    return df


def _is_missing(value):
    return pd.isna(value) or str(value).strip().lower() in MISSING_TOKENS


def reshape_to_samples(table, label_row="Label"):
    """
    Transpose a feature x sample table into the sample table used downstream.

    Returns a DataFrame indexed by sample_id whose first column is `label` and
    whose remaining columns are float intensities, one per feature.  The label
    and intensities of a sample share a row, so their correspondence survives
    any reordering or filtering.
    """
    keys = {str(k).strip().lower(): k for k in table.index}
    if label_row.strip().lower() not in keys:
        raise ParseError(f"Label row '{label_row}' not found in input table.")
    label_key = keys[label_row.strip().lower()]

    flipped = table.T
    flipped.index.name = "sample_id"
    labels = flipped.pop(label_key).astype(str).str.strip()
    blank = labels[labels.map(_is_missing)].index.tolist()
    if blank:
        raise ParseError(f"Samples without a group label: {blank}")

    bad_cells = []
    numeric = {}
    for feature in flipped.columns:
        raw = flipped[feature]
        missing = raw.map(_is_missing)
        cleaned = raw.map(lambda v: np.nan if _is_missing(v) else str(v).strip())
        values = pd.to_numeric(cleaned, errors="coerce")
        failed = values.isna() & ~missing
        for sid in raw.index[failed]:
            bad_cells.append(f"{sid}/{feature}={raw[sid]!r}")
        numeric[feature] = values.astype(float)
    if bad_cells:
        shown = ", ".join(bad_cells[:5])
        more = f" (+{len(bad_cells) - 5} more)" if len(bad_cells) > 5 else ""
        raise TypeConversionError(f"Non-numeric intensity cells: {shown}{more}")

    if not numeric:
        raise ParseError("Input table has no feature rows besides the label row.")
    samples = pd.DataFrame(numeric, index=flipped.index)
    samples.insert(0, LABEL_COL, labels)
    return samples


def feature_columns(samples):
    return [c for c in samples.columns if c != LABEL_COL]


def to_feature_matrix(samples):
    """Numeric feature x sample view of a sample table (label dropped)."""
    matrix = samples[feature_columns(samples)].T
    matrix.index.name = "feature_id"
    matrix.columns.name = None
    return matrix


def sample_records(samples):
    """Yield one SampleRecord per row of a sample table."""
    features = feature_columns(samples)
    for sid, row in samples.iterrows():
        yield SampleRecord(sid, row[LABEL_COL], row[features].astype(float))


def row_medians(samples):
    """Median feature intensity per sample, ignoring missing values."""
    return samples[feature_columns(samples)].median(axis=1, skipna=True)


def median_normalize(samples, on_zero="raise"):
    """
    Divide every intensity of a sample by that sample's median intensity.

    Rows with a zero or undefined (all-missing) median cannot be scaled:
    on_zero="raise" raises ZeroMedianError, on_zero="drop" removes the rows.
    """
    if on_zero not in ("raise", "drop"):
        raise ValueError(f"on_zero must be 'raise' or 'drop', got {on_zero!r}")
    medians = row_medians(samples)
    bad = medians.index[(medians == 0) | medians.isna()].tolist()
    if bad:
        if on_zero == "raise":
            raise ZeroMedianError(f"Samples with zero or undefined median intensity: {bad}")
        print(f"  WARNING: dropping {len(bad)} samples with zero median: {bad}", flush=True)
        samples = samples.drop(index=bad)
        medians = medians.drop(index=bad)

    features = feature_columns(samples)
    normalized = samples[features].div(medians, axis=0)
    normalized.insert(0, LABEL_COL, samples[LABEL_COL])
    return normalized


def read_sample_table(path):
    """Load a sample table previously written with write_sample_table."""
    try:
        df = pd.read_csv(path, sep="\t", index_col=0, dtype=str, keep_default_na=False)
    except FileNotFoundError:
        raise ParseError(f"Sample table not found: {path}")
    except (OSError, pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise ParseError(f"Could not read sample table {path}: {e}")
    if LABEL_COL not in df.columns:
        raise ParseError(f"Sample table {path} has no '{LABEL_COL}' column.")
    try:
        samples = df[feature_columns(df)].astype(float)
    except ValueError as e:
        raise TypeConversionError(f"Non-numeric intensity in {path}: {e}")
    samples.insert(0, LABEL_COL, df[LABEL_COL].astype(str))
    samples.index = df.index.astype(str)
    samples.index.name = "sample_id"
    return samples


def write_sample_table(samples, path):
    samples.to_csv(path, sep="\t", na_rep="NaN")


def log10_intensities(samples):
    """log10 of positive intensities; zeros and missing values become NaN."""
    values = samples[feature_columns(samples)].to_numpy(dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        logged = np.where(values > 0, np.log10(values), np.nan)
    return pd.DataFrame(logged, index=samples.index, columns=feature_columns(samples))
