import json
import sys

import numpy as np
import pandas as pd

from phenosim import phenosim as cli
from phenosim.table import summarize_series


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["phenosim", *argv])
    cli.main()


def test_effs_pheno_stat(tmp_path, monkeypatch, geno, pop):
    geno_path = tmp_path / "geno.txt"
    np.savetxt(geno_path, geno, fmt="%d", delimiter="\t")
    pop_path = tmp_path / "pop.tsv"
    pop.to_csv(pop_path, sep="\t", index=False)
    cfg_path = tmp_path / "sim.json"
    cfg_path.write_text(json.dumps({
        "effs": {"cal_model": "AD", "num_qtn": [10], "sd": [0.4, 0.2]},
        "pheno": {"h2_tr1": [0.3, 0.1], "sel_on": False},
        "cv": {"fam": [0.2]},
    }))
    out_dir = tmp_path / "out"

    run(monkeypatch, "effs", "--geno", str(geno_path), "--config", str(cfg_path), "--seed", "1",
        "--out_dir", str(out_dir), "--out_name", "gen1")
    effs_path = out_dir / "gen1.effs.json"
    assert effs_path.exists()

    run(monkeypatch, "pheno", "--geno", str(geno_path), "--pop", str(pop_path), "--config", str(cfg_path),
        "--effs", str(effs_path), "--seed", "2", "--out_dir", str(out_dir), "--out_name", "gen1")
    info_pheno = pd.read_csv(out_dir / "gen1.pheno.tsv", sep="\t")
    assert list(info_pheno.columns) == ["TBV", "TGV", "pheno"]
    new_pop = pd.read_csv(out_dir / "gen1.pop.tsv", sep="\t")
    assert "pheno" in new_pop.columns
    info_eff = pd.read_csv(out_dir / "gen1.eff.tsv", sep="\t")
    assert list(info_eff.columns) == ["mu", "ind_a", "ind_d", "ind_env"]
    assert (out_dir / "gen1.variance.png").exists()

    run(monkeypatch, "stat", "--input", str(out_dir / "gen1.eff.tsv"), "--columns", "^ind_",
        "--out_dir", str(out_dir), "--out_name", "eff")
    stats = pd.read_csv(out_dir / "eff.stats.tsv", sep="\t")
    assert list(stats["column"]) == ["ind_a", "ind_d", "ind_env"]
    assert (out_dir / "eff.png").exists()


def test_summarize_series_constant_column():
    stat = summarize_series(pd.Series([1.0] * 10))
    assert stat["std"] == 0
    assert np.isnan(stat["shapiro_p"])
