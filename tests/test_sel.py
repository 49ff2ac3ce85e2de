import numpy as np
import pandas as pd
import pytest

from phenosim.effs import cal_effs
from phenosim.errors import ExternalEvaluationFailure
from phenosim.model import FRSpec, PhenotypeResult
from phenosim.pheno import phenotype
from phenosim.sel import (
    Criterion,
    EvaluationResult,
    GenomicEvaluator,
    build_request,
    resolve_ebv,
    set_pheno,
)


class FakeEvaluator(GenomicEvaluator):
    """Returns the phenotype as EBV and keeps the last request."""

    def __init__(self):
        self.request = None

    def evaluate(self, request):
        self.request = request
        return EvaluationResult(ebv=request.pheno.copy())


def test_criterion_parse():
    assert Criterion.parse("gEBVs") is Criterion.GEBV
    assert Criterion.parse("gEBVs").is_ebv
    assert not Criterion.parse("TBV").is_ebv
    with pytest.raises(ValueError):
        Criterion.parse("BLUP")


def test_set_pheno_replaces_result_columns(pop):
    info_pheno = pd.DataFrame({"TBV": np.arange(100.0), "TGV": np.ones(100), "pheno": np.zeros(100)})
    first = set_pheno(pop, info_pheno, "TBV")
    assert "TBV" in first.columns
    second = set_pheno(first, info_pheno, "pheno")
    assert "pheno" in second.columns
    assert not {"TBV", "TGV", "ebv"} & set(second.columns)
    assert list(second.columns[:len(pop.columns)]) == list(pop.columns)


def test_set_pheno_multi_trait_columns(pop):
    info_pheno = pd.DataFrame({"TBV_tr1": np.zeros(100), "TBV_tr2": np.ones(100), "pheno_tr1": np.zeros(100)})
    out = set_pheno(pop, info_pheno, Criterion.TBV)
    assert {"TBV_tr1", "TBV_tr2"} <= set(out.columns)
    assert "pheno_tr1" not in out.columns


def test_genomic_evaluation(geno, pop, rng):
    effs = cal_effs(geno, cal_model="A", rng=rng)
    evaluator = FakeEvaluator()
    result = phenotype(effs=effs, pop=pop, pop_geno=geno, sel_crit="gEBVs", evaluator=evaluator, rng=rng)
    request = evaluator.request
    assert request.mode == "A"
    assert request.bivar_pos is None
    assert list(request.fixed[0].columns) == ["intercept"]
    assert list(request.pedigree.columns) == ["index", "sir", "dam"]
    np.testing.assert_allclose(result.info_pheno["ebv"], result.info_pheno["pheno"])
    assert "ebv" in result.pop.columns
    assert "pheno" not in result.pop.columns
    assert result.info_ebv is not None


def test_callable_evaluator_and_id_order(pop):
    info_eff = pd.DataFrame({"ind_a": np.zeros(100), "ind_d": np.zeros(100)})
    info_pheno = pd.DataFrame({"TBV": np.zeros(100), "TGV": np.zeros(100), "pheno": np.arange(100.0)})
    result = PhenotypeResult({}, info_eff, info_pheno)
    request = build_request(result, pop, None, None, None, None, "pEBVs")
    assert request.mode == "AD"

    def evaluator(req):
        ids = list(reversed(req.geno_id))
        return pd.DataFrame({"id": ids, "a": np.arange(100.0)[::-1], "d": np.ones(100)})

    resolve_ebv(result, request, evaluator)
    # additive and dominance EBVs are summed, matched by id
    np.testing.assert_allclose(result.info_pheno["ebv"], np.arange(100.0) + 1)


def test_evaluator_error_is_wrapped(geno, pop, rng):
    effs = cal_effs(geno, cal_model="A", rng=rng)
    before = effs.to_dict()

    def broken(request):
        raise RuntimeError("solver diverged")

    with pytest.raises(ExternalEvaluationFailure):
        phenotype(effs=effs, pop=pop, pop_geno=geno, var_pheno=3.0, sel_crit="ssEBVs", evaluator=broken, rng=rng)
    assert effs.to_dict() == before


def test_failed_evaluation_result(pop):
    info_pheno = pd.DataFrame({"TBV": np.zeros(100), "TGV": np.zeros(100), "pheno": np.zeros(100)})
    result = PhenotypeResult({}, pd.DataFrame({"ind_a": np.zeros(100)}), info_pheno)
    request = build_request(result, pop, None, None, None, None, "gEBVs")
    with pytest.raises(ExternalEvaluationFailure):
        resolve_ebv(result, request, lambda req: EvaluationResult.failure("no convergence"))


def test_ebv_criterion_needs_evaluator(pop, rng):
    with pytest.raises(ValueError):
        phenotype(pop=pop, var_pheno=1.0, sel_crit="gEBVs", rng=rng)


def test_failed_evaluation_keeps_phenotype_for_retry(geno, pop, rng):
    effs = cal_effs(geno, cal_model="A", rng=rng)
    before = effs.to_dict()
    fr = FRSpec(
        rand={"herd": {"level": [f"h{i}" for i in range(60)], "eff": rng.standard_normal(60)}},
        cmb_rand={"tr1": {"rn": ["herd"], "ratio": [0.1]}},
    )

    def broken(request):
        raise RuntimeError("solver diverged")

    with pytest.raises(ExternalEvaluationFailure) as excinfo:
        phenotype(effs=effs, FR=fr, pop=pop, pop_geno=geno, var_pheno=3.0, sel_crit="gEBVs",
                  evaluator=broken, rng=rng)
    partial = excinfo.value.result
    assert partial is not None
    assert {"TBV", "TGV", "pheno"} <= set(partial.info_pheno.columns)
    assert "ebv" not in partial.info_pheno.columns
    assert "pheno" in partial.pop.columns
    assert "herd" in partial.pop.columns
    assert list(partial.fr[0]["rand"].columns) == ["herd"]
    assert partial.effs is not effs
    assert effs.to_dict() == before

    retry = set_pheno(partial.pop, partial.info_pheno, "TBV")
    assert "TBV" in retry.columns
    assert "pheno" not in retry.columns
    np.testing.assert_allclose(retry["TBV"], partial.info_pheno["TBV"])


def test_evaluator_interface_requires_evaluate():
    class Incomplete(GenomicEvaluator):
        pass

    with pytest.raises(TypeError):
        Incomplete()
