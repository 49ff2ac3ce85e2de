import numpy as np
import pandas as pd
import pytest

from phenosim.cv import adjust_cv
from phenosim.errors import InconsistentCVSpec, InvalidDimensions
from phenosim.model import PhenotypeResult


def make_result(pheno):
    pheno = np.asarray(pheno, dtype=float)
    info_eff = pd.DataFrame({"ind_a": np.zeros(len(pheno)), "ind_env": pheno})
    info_pheno = pd.DataFrame({"TBV": np.zeros(len(pheno)), "TGV": np.zeros(len(pheno)), "pheno": pheno})
    return PhenotypeResult({}, info_eff, info_pheno)


@pytest.fixture
def two_families(rng):
    pop = pd.DataFrame({"index": np.arange(100), "fam": np.repeat([1, 2], 50)})
    pheno = np.r_[rng.normal(0.0, 1.0, 50), rng.normal(3.0, 4.0, 50)]
    return pop, make_result(pheno)


def test_family_cv(two_families):
    pop, result = two_families
    adjust_cv(result, pop, {"fam": [0.2]})
    ph = result.info_pheno["pheno"]
    for fam in (1, 2):
        sub = ph[pop["fam"].to_numpy() == fam]
        assert sub.std() / sub.mean() == pytest.approx(0.2, rel=1e-6)
    assert result.info_eff.columns[0] == "mu"
    np.testing.assert_allclose(result.info_eff.sum(axis=1), ph)


def test_population_cv(two_families):
    pop, result = two_families
    adjust_cv(result, pop, {"pop": [0.1]})
    ph = result.info_pheno["pheno"]
    assert ph.std() / ph.mean() == pytest.approx(0.1, rel=1e-6)
    assert result.info_eff["mu"].nunique() == 1


def test_single_member_family_not_shifted(rng):
    pop = pd.DataFrame({"index": np.arange(11), "fam": [1] * 10 + [2]})
    result = make_result(rng.normal(0.0, 1.0, 11))
    before = result.info_pheno["pheno"].iloc[10]
    adjust_cv(result, pop, {"fam": [0.2]})
    assert result.info_eff["mu"].iloc[10] == 0
    assert result.info_pheno["pheno"].iloc[10] == before


def test_existing_mu_column_is_merged(two_families):
    pop, result = two_families
    result.info_eff.insert(0, "mu", 1.0)
    result.info_pheno["pheno"] += 1.0
    adjust_cv(result, pop, {"pop": [0.1]})
    assert list(result.info_eff.columns).count("mu") == 1
    np.testing.assert_allclose(result.info_eff.sum(axis=1), result.info_pheno["pheno"])


@pytest.mark.parametrize("cv", [{"fam": [0.2], "pop": [0.2]}, {}])
def test_inconsistent_spec(two_families, cv):
    pop, result = two_families
    with pytest.raises(InconsistentCVSpec):
        adjust_cv(result, pop, cv)


def test_cv_length(two_families):
    pop, result = two_families
    with pytest.raises(InvalidDimensions):
        adjust_cv(result, pop, {"fam": [0.2, 0.3]})


def test_constant_family_not_shifted(rng):
    pop = pd.DataFrame({"index": np.arange(15), "fam": [1] * 10 + [2] * 5})
    result = make_result(np.r_[rng.normal(0.0, 1.0, 10), np.full(5, 3.0)])
    adjust_cv(result, pop, {"fam": [0.2]})
    np.testing.assert_array_equal(result.info_eff["mu"].iloc[10:], 0.0)
    np.testing.assert_array_equal(result.info_pheno["pheno"].iloc[10:], 3.0)
    assert result.info_eff["mu"].iloc[0] != 0
