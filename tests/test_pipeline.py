import importlib.util
import os

import numpy as np
import pandas as pd
import pytest

SCRIPTS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "scripts")


def load_script(name):
    spec = importlib.util.spec_from_file_location(name.replace(".py", ""),
                                                  os.path.join(SCRIPTS_DIR, name))
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def intensity_csv(tmp_path):
    rng = np.random.default_rng(7)
    n_features = 40
    samples = [f"KO_{i}" for i in range(1, 7)] + [f"WT_{i}" for i in range(1, 7)]
    values = rng.lognormal(mean=12, sigma=1.0, size=(n_features, 12))
    values[:10, :6] *= 1.8
    values[5, 3] = np.nan
    features = [f"{100 + 3.7 * i:.4f}/{1 + 0.2 * i:.2f}" for i in range(n_features)]

    table = pd.DataFrame(values, index=features, columns=samples)
    table.index.name = "Sample"
    label_row = pd.DataFrame([["KO"] * 6 + ["WT"] * 6], index=["Label"], columns=samples)
    path = tmp_path / "intensities.csv"
    pd.concat([label_row, table.astype(object)]).to_csv(path, index_label="Sample")
    return str(path)


def test_full_pipeline(tmp_path, intensity_csv):
    prepared = str(tmp_path / "prepared")
    effects_dir = str(tmp_path / "effect_sizes")
    power_dir = str(tmp_path / "power")

    load_script("00_prepare_intensities.py").main(
        ["--input", intensity_csv, "--out-dir", prepared])
    normalized = pd.read_csv(os.path.join(prepared, "normalized_sample_table.tsv"),
                             sep="\t", index_col=0)
    assert normalized.shape == (12, 41)
    np.testing.assert_allclose(normalized.drop(columns="label").median(axis=1), 1.0)
    assert os.path.exists(os.path.join(prepared, "intensity_distributions.png"))

    load_script("01_effect_sizes.py").main(
        ["--table", os.path.join(prepared, "normalized_sample_table.tsv"),
         "--out-dir", effects_dir])
    effects = pd.read_csv(os.path.join(effects_dir, "effect_sizes.tsv"), sep="\t", index_col=0)
    summary = pd.read_csv(os.path.join(effects_dir, "effect_size_summary.tsv"), sep="\t")
    assert len(effects) == 40
    assert summary.loc[0, "group1"] == "KO"
    assert summary.loc[0, "mean_abs_d"] == pytest.approx(effects["abs_d"].mean())

    load_script("02_power_analysis.py").main(
        ["--summary", os.path.join(effects_dir, "effect_size_summary.tsv"),
         "--n-max", "20", "--power", "0.8", "--out-dir", power_dir])
    needed = pd.read_csv(os.path.join(power_dir, "samples_needed.tsv"), sep="\t")
    assert "observed" in set(needed["source"])
    assert (needed["achieved_power"] >= 0.8).all()
    grid = pd.read_csv(os.path.join(power_dir, "power_grid.tsv"), sep="\t")
    assert grid["n_per_group"].max() == 20
    assert os.path.exists(os.path.join(power_dir, "power_curves.png"))
    assert os.path.exists(os.path.join(power_dir, "detectable_effects.tsv"))


def test_prepare_exits_on_missing_input(tmp_path):
    with pytest.raises(SystemExit) as exc:
        load_script("00_prepare_intensities.py").main(
            ["--input", str(tmp_path / "missing.csv"), "--out-dir", str(tmp_path / "out")])
    assert "ERROR" in str(exc.value)


def test_prepare_exits_on_non_numeric_cell(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("Sample,A,B,C,D\nLabel,KO,KO,WT,WT\nf1,1,2,x,4\n")
    with pytest.raises(SystemExit) as exc:
        load_script("00_prepare_intensities.py").main(
            ["--input", str(path), "--out-dir", str(tmp_path / "out")])
    assert "Non-numeric" in str(exc.value)


def test_power_with_explicit_effect_size(tmp_path):
    out = str(tmp_path / "power")
    load_script("02_power_analysis.py").main(
        ["--effect-size", "0.736", "--n-max", "40", "--power", "0.8", "--out-dir", out])
    needed = pd.read_csv(os.path.join(out, "samples_needed.tsv"), sep="\t")
    observed = needed[needed["source"] == "observed"].iloc[0]
    assert 29 <= observed["n_per_group"] <= 31


def test_power_exits_on_malformed_summary(tmp_path):
    summary = tmp_path / "summary.tsv"
    summary.write_text("mean_abs_d\nabc\n")
    with pytest.raises(SystemExit) as exc:
        load_script("02_power_analysis.py").main(
            ["--summary", str(summary), "--out-dir", str(tmp_path / "out")])
    assert "ERROR" in str(exc.value)


def test_power_exits_on_empty_summary(tmp_path):
    summary = tmp_path / "summary.tsv"
    summary.write_text("")
    with pytest.raises(SystemExit) as exc:
        load_script("02_power_analysis.py").main(
            ["--summary", str(summary), "--out-dir", str(tmp_path / "out")])
    assert "ERROR" in str(exc.value)
