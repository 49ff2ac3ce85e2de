import numpy as np
import pytest
from scipy import stats as sstats

from phenosim.errors import InsufficientRandomLevels, InvalidDimensions, MismatchedLevelEffect
from phenosim.fr import cal_fr, normal_effects
from phenosim.model import FRSpec


def herd_spec(rng, n_level=60):
    return {"level": [f"h{i}" for i in range(n_level)], "eff": rng.standard_normal(n_level)}


def test_fixed_effect_from_population_levels(pop, rng):
    fr = FRSpec(fix={"sex": {"level": [1, 2], "eff": [0.5, -0.5]}}, cmb_fix={"tr1": ["sex"]})
    out, pop_out = cal_fr(pop, fr, [1.0], rng)
    fix = out[0]["fix"]
    assert list(fix.columns) == ["sex"]
    np.testing.assert_array_equal(fix["sex"].to_numpy(), np.where(pop["sex"] == 1, 0.5, -0.5))
    assert out[0]["rand"].shape == (100, 0)
    assert list(pop_out.columns) == list(pop.columns)


def test_random_effect_added_and_scaled(pop, rng):
    fr = FRSpec(rand={"herd": herd_spec(rng)}, cmb_rand={"tr1": {"rn": ["herd"], "ratio": [0.1]}})
    out, pop_out = cal_fr(pop, fr, [2.0], rng)
    assert "herd" in pop_out.columns
    assert "herd" not in pop.columns
    assert out[0]["rand"]["herd"].var() == pytest.approx(0.2, rel=1e-6)


def test_disabled_fixed_effect(pop, rng):
    fr = FRSpec(fix={"sex": False}, cmb_fix={"tr1": ["sex"]})
    out, _ = cal_fr(pop, fr, [1.0], rng)
    assert np.all(out[0]["fix"]["sex"] == 0)


def test_too_few_random_levels(pop, rng):
    fr = FRSpec(rand={"herd": herd_spec(rng, 10)}, cmb_rand={"tr1": {"rn": ["herd"], "ratio": [0.1]}})
    with pytest.raises(InsufficientRandomLevels):
        cal_fr(pop, fr, [1.0], rng)


def test_levels_must_match_population(pop, rng):
    fr = FRSpec(fix={"sex": {"level": [1, 3], "eff": [0.5, -0.5]}}, cmb_fix={"tr1": ["sex"]})
    with pytest.raises(MismatchedLevelEffect):
        cal_fr(pop, fr, [1.0], rng)


def test_level_and_effect_length():
    with pytest.raises(MismatchedLevelEffect):
        FRSpec(fix={"sex": {"level": [1, 2], "eff": [0.5]}})


def test_random_ratio_length():
    with pytest.raises(InvalidDimensions):
        FRSpec(rand={"herd": {"level": ["a"], "eff": [1.0]}}, cmb_rand={"tr1": {"rn": ["herd"], "ratio": []}})


def test_normal_effects_redraws_until_normal(rng):
    eff = np.r_[np.zeros(59), 100.0]
    out = normal_effects(eff, rng)
    assert len(out) == 60
    assert sstats.shapiro(out)[1] >= 0.05


def test_per_trait_combination(pop, rng):
    fr = FRSpec(
        fix={"sex": {"level": [1, 2], "eff": [0.5, -0.5]}},
        rand={"herd": herd_spec(rng)},
        cmb_fix={"tr1": ["sex"], "tr2": []},
        cmb_rand={"tr1": {"rn": ["herd"], "ratio": [0.1]}, "tr2": {"rn": ["herd"], "ratio": [0.2]}},
    )
    out, _ = cal_fr(pop, fr, [1.0, 10.0], rng)
    assert list(out[1]["fix"].columns) == []
    assert out[0]["rand"]["herd"].var() == pytest.approx(0.1, rel=1e-6)
    assert out[1]["rand"]["herd"].var() == pytest.approx(2.0, rel=1e-6)


def test_unreferenced_fixed_effect_not_added(pop, rng):
    spec = {"level": ["h1", "h2"], "eff": [1.0, -1.0]}
    fr = FRSpec(fix={"herd": spec}, cmb_fix={"tr1": []})
    out, pop_out = cal_fr(pop, fr, [1.0], rng)
    assert "herd" not in pop_out.columns
    assert list(out[0]["fix"].columns) == []

    fr = FRSpec(fix={"herd": spec}, cmb_fix={"tr1": ["herd"]})
    out, pop_out = cal_fr(pop, fr, [1.0], rng)
    assert set(pop_out["herd"]) <= {"h1", "h2"}
    np.testing.assert_array_equal(out[0]["fix"]["herd"], np.where(pop_out["herd"] == "h1", 1.0, -1.0))
