import numpy as np
import pytest

from phenosim.effs import cal_eff, cal_effs, marker_weights
from phenosim.errors import InvalidDimensions, UnevenQTNCount
from phenosim.geno import geno_cvt


def test_cal_eff_concatenates_blocks(rng):
    eff = cal_eff([2, 6, 10], [0.4, 0.2, 0.02], "normal", rng)
    assert eff.shape == (18,)
    assert np.all(np.abs(eff[8:]) < 0.02 * 6)


def test_cal_eff_block_sd(rng):
    eff = cal_eff([4000, 4000], [1.0, 0.01], rng=rng)
    assert np.std(eff[:4000]) == pytest.approx(1.0, rel=0.05)
    assert np.std(eff[4000:]) == pytest.approx(0.01, rel=0.05)


def test_cal_eff_no_qtn(rng):
    assert cal_eff(0, 0.4, rng=rng).shape == (0,)


def test_cal_eff_other_distributions(rng):
    geo = cal_eff(50, 1.0, {"dist": "geometry", "prob": 0.5}, rng)
    assert np.all(geo >= 0)
    assert np.all(geo == np.round(geo))
    gam = cal_eff(50, 1.0, {"dist": "gamma", "shape": 2.0, "scale": 1.0}, rng)
    assert np.all(gam > 0)
    beta = cal_eff(50, 1.0, {"dist": "beta", "shape1": 2, "shape2": 3, "ncp": 1.5}, rng)
    assert np.all((beta > 0) & (beta < 1))


def test_cal_eff_unknown_distribution(rng):
    with pytest.raises(ValueError):
        cal_eff(5, 1.0, "cauchy", rng)


def test_marker_weights_blocks(geno):
    wt = marker_weights(geno, qtn_spot=[0.1] * 10)
    assert wt.shape == (500,)
    assert wt.sum() == pytest.approx(1.0)


def test_marker_weights_maf_floor(geno):
    geno = geno.copy()
    geno[:5] = 0
    wt = marker_weights(geno, maf=0.05)
    assert np.all(wt[:5] == 0)
    assert np.all(wt[5:] > 0)


def test_cal_effs_single_trait(geno, rng):
    effs = cal_effs(geno, cal_model="A", num_qtn=[2, 6, 10], rng=rng)
    trait = effs[0]
    assert trait.num_qtn == 18
    assert len(np.unique(trait.markers)) == 18
    assert np.all(np.diff(trait.markers) > 0)
    assert trait.effects.components == ("a",)


def test_cal_effs_adi_requires_even_qtn(geno, rng):
    with pytest.raises(UnevenQTNCount):
        cal_effs(geno, cal_model="ADI", num_qtn=[7], sd=[0.4] * 6, rng=rng)
    effs = cal_effs(geno, cal_model="ADI", num_qtn=[8], sd=[0.4] * 6, rng=rng)
    eff = effs[0].effects
    assert len(eff.a) == 8
    assert len(eff.d) == 8
    for comp in ("aa", "ad", "da", "dd"):
        assert len(eff.get(comp)) == 4


def test_cal_effs_sd_too_short(geno, rng):
    with pytest.raises(InvalidDimensions):
        cal_effs(geno, cal_model="AD", num_qtn=[2, 6, 10], sd=[0.4, 0.2, 0.02], rng=rng)


def test_cal_effs_multi_trait_shares_qtns(geno, rng):
    effs = cal_effs(geno, multrait=True, num_qtn_trn=[[18, 10], [10, 20]], sd_trn=[[1, 0], [0, 0.5]], rng=rng)
    assert effs.multrait
    assert effs[0].num_qtn == 28
    assert effs[1].num_qtn == 30
    shared = set(effs[0].markers) & set(effs[1].markers)
    assert len(shared) == 10


def test_cal_effs_multi_trait_not_symmetric(geno, rng):
    with pytest.raises(InvalidDimensions):
        cal_effs(geno, multrait=True, num_qtn_trn=[[18, 10], [5, 20]], rng=rng)


def test_cal_effs_multi_trait_sd_shape(geno, rng):
    with pytest.raises(InvalidDimensions):
        cal_effs(geno, multrait=True, num_qtn_trn=[[18, 10], [10, 20]], sd_trn=[[1.0]], rng=rng)


def test_geno_cvt_haplotype_columns(rng):
    hap = rng.integers(0, 2, size=(20, 10)).astype(float)
    geno = geno_cvt(hap, num_ind=5)
    assert geno.shape == (20, 5)
    np.testing.assert_array_equal(geno[:, 0], hap[:, 0] + hap[:, 1])
    with pytest.raises(InvalidDimensions):
        geno_cvt(hap, num_ind=4)


def test_geno_cvt_imputes_missing():
    geno = np.array([[0.0, 2.0, np.nan], [1.0, 1.0, 1.0]])
    out = geno_cvt(geno, num_ind=3)
    assert out[0, 2] == pytest.approx(1.0)
