import math
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from phenosim.cv import adjust_cv, validate_cv
from phenosim.errors import (
    ExternalEvaluationFailure,
    HeritabilityOutOfRange,
    InvalidDimensions,
    NegativeResidualVariance,
)
from phenosim.fr import cal_fr, validate_fr
from phenosim.gcov import build_cov, cal_gnt_multi, check_cov, genetic_summary
from phenosim.geno import geno_cvt
from phenosim.gnt import cal_gnt, check_h2, sample_var
from phenosim.log import logger
from phenosim.model import Architecture, FRSpec, PhenotypeResult, trait_names
from phenosim.sel import Criterion, Evaluator, build_request, resolve_ebv, set_pheno


# columns excluded from the effect correlation check
CORRELATION_SKIP = ("ind_d", "ind_aa", "ind_ad", "ind_da", "ind_dd")
CORRELATION_LIMIT = 0.5


def _negative_residual():
    return NegativeResidualVariance(
        "Please reduce your fixed variance, random variance or genetic variance "
        "to get a positive environmental variance!"
    )


# ------------------------
# Assembly
# ------------------------

def cal_pheno(fr: Optional[Dict[str, pd.DataFrame]], info_eff: Optional[pd.DataFrame], num_ind: int,
              var_pheno: float, rng: Optional[np.random.Generator] = None) -> dict:
    """
    Sum fixed, random, genetic and environmental effects of a single trait.

    The environmental variance is what is left of ``var_pheno`` after the
    random and genetic variances; a standard normal draw is rescaled to it.

    :param fr: {"fix": DataFrame, "rand": DataFrame} of the trait, or None
    :param info_eff: genetic decomposition (ind_a, ind_d, ...), or None without genotype
    :param num_ind: number of individuals
    :param var_pheno: phenotype variance
    :param rng: numpy random generator
    :return: dict with info_tr, info_eff and info_pheno
    """
    rng = rng if rng is not None else np.random.default_rng()
    index = pd.RangeIndex(num_ind)

    parts = []
    var_fr = pd.Series(dtype=float)
    if fr is not None:
        parts.append(fr["fix"].reset_index(drop=True))
        parts.append(fr["rand"].reset_index(drop=True))
        var_fr = fr["rand"].var()
    if info_eff is not None:
        info_eff = info_eff.reset_index(drop=True)
        parts.append(info_eff)
        var_gnt = info_eff.var()
        ind_a = info_eff["ind_a"].to_numpy()
        ind_g = info_eff.sum(axis=1).to_numpy()
    else:
        var_gnt = pd.Series(dtype=float)
        ind_a = np.zeros(num_ind)
        ind_g = np.zeros(num_ind)

    var_env = var_pheno - var_fr.sum() - var_gnt.sum()
    if not var_env > 0:
        raise _negative_residual()

    ind_env = rng.standard_normal(num_ind)
    v = sample_var(ind_env)
    if v > 0:
        ind_env = ind_env * math.sqrt(var_env / v)
    info = pd.concat(parts, axis=1) if parts else pd.DataFrame(index=index)
    info["ind_env"] = ind_env
    ind_pheno = info.sum(axis=1).to_numpy()

    Ve = sample_var(ind_env)
    logger.info(f"Total {'environmental':<20} variance: {Ve}")
    h2 = var_gnt / (var_gnt.sum() + var_fr.sum() + Ve)
    info_tr = {"Vg": var_gnt, "Ve": Ve, "h2": h2}
    info_pheno = pd.DataFrame({"TBV": ind_a, "TGV": ind_g, "pheno": ind_pheno})
    return {"info_tr": info_tr, "info_eff": info, "info_pheno": info_pheno}


def cal_pheno_multi(fr: Optional[List[Dict[str, pd.DataFrame]]], df_ind_a: pd.DataFrame,
                    var_pheno: Sequence[float], rng: Optional[np.random.Generator] = None) -> dict:
    """
    Sum effects of several correlated traits.

    Environmental effects are drawn jointly and forced to an exactly diagonal
    empirical covariance holding the residual variance of every trait.

    :param fr: fixed and random effect tables of every trait, or None
    :param df_ind_a: additive values of every trait (columns tr1, tr2, ...)
    :param var_pheno: phenotype variance of every trait
    :param rng: numpy random generator
    :return: dict with info_tr, info_eff (one table per trait) and info_pheno
    """
    rng = rng if rng is not None else np.random.default_rng()
    df_ind_a = df_ind_a.reset_index(drop=True)
    nind, nqt = df_ind_a.shape
    nts = list(df_ind_a.columns)
    var_pheno = np.asarray(var_pheno, dtype=float)

    if fr is not None:
        var_fr = np.array([fr[i]["rand"].var().sum() for i in range(nqt)])
        mat_fr = np.column_stack([
            fr[i]["fix"].sum(axis=1).to_numpy() + fr[i]["rand"].sum(axis=1).to_numpy() for i in range(nqt)
        ])
    else:
        var_fr = np.zeros(nqt)
        mat_fr = np.zeros((nind, nqt))

    var_add = np.diag(df_ind_a.cov().to_numpy())
    var_env = var_pheno - var_fr - var_add
    if np.any(~(var_env > 0)):
        raise _negative_residual()

    mat_env = rng.standard_normal((nind, nqt))
    mat_env = build_cov(mat_env - mat_env.mean(axis=0), np.diag(var_env))
    mat_env = pd.DataFrame(mat_env, columns=nts)
    for tr in nts:
        logger.info(f"Total {'environmental':<20} variance of {tr}: {sample_var(mat_env[tr])}")

    info_tr = genetic_summary(df_ind_a, var_fr, mat_env.cov())
    ind_pheno = df_ind_a.to_numpy() + mat_fr + mat_env.to_numpy()

    info_eff = {}
    for i, tr in enumerate(nts):
        parts = []
        if fr is not None:
            parts.append(fr[i]["fix"].reset_index(drop=True))
            parts.append(fr[i]["rand"].reset_index(drop=True))
        parts.append(pd.DataFrame({"ind_a": df_ind_a[tr].to_numpy(), "ind_env": mat_env[tr].to_numpy()}))
        info_eff[tr] = pd.concat(parts, axis=1)

    info_pheno = pd.DataFrame(index=pd.RangeIndex(nind))
    for tr in nts:
        info_pheno[f"TBV_{tr}"] = df_ind_a[tr].to_numpy()
    for tr in nts:
        info_pheno[f"TGV_{tr}"] = df_ind_a[tr].to_numpy()
    for i, tr in enumerate(nts):
        info_pheno[f"pheno_{tr}"] = ind_pheno[:, i]
    return {"info_tr": info_tr, "info_eff": info_eff, "info_pheno": info_pheno}


def check_effect_correlation(info_eff: Union[pd.DataFrame, Dict[str, pd.DataFrame]],
                             limit: float = CORRELATION_LIMIT) -> bool:
    """
    Warn when effects of a decomposition table are highly correlated.

    Constant columns are dropped and dominance and interaction columns are
    ignored. Returns True when a warning was logged.
    """
    if isinstance(info_eff, dict):
        flagged = [check_effect_correlation(table, limit) for table in info_eff.values()]
        return any(flagged)

    varying = [c for c in info_eff.columns if info_eff[c].nunique(dropna=True) > 1]
    cols = [c for c in varying if c not in CORRELATION_SKIP]
    if len(cols) < 2:
        return False
    cor = info_eff[cols].corr().to_numpy()
    lower = cor[np.tril_indices(len(cols), -1)]
    if np.any(lower > limit):
        logger.warning("Effect variables are highly correlated, the simulated phenotype may be confounded!")
        return True
    return False


# ------------------------
# Phenotype of one generation
# ------------------------

def phenotype(
    effs: Optional[Architecture] = None,
    FR: Optional[FRSpec] = None,
    cv: Optional[dict] = None,
    pop: pd.DataFrame = None,
    pop_geno=None,
    pos_map: Optional[pd.DataFrame] = None,
    var_pheno: Optional[Union[float, Sequence[float]]] = None,
    h2_tr1: Sequence[float] = (0.3, 0.1, 0.05, 0.05, 0.05, 0.01),
    gnt_cov=((1, 2), (2, 16)),
    h2_trn: Sequence[float] = (0.3, 0.5),
    sel_crit: Union[str, Criterion] = "pheno",
    pop_total: Optional[pd.DataFrame] = None,
    sel_on: bool = True,
    evaluator: Optional[Evaluator] = None,
    multrait: bool = False,
    rng: Optional[np.random.Generator] = None,
) -> PhenotypeResult:
    """
    Generate the phenotypes of one generation.

    Genetic values come from ``effs`` and ``pop_geno``; without genotype the
    genetic values are zero. Fixed and random effects, C.V. calibration and
    the selection criterion are applied in that order. The caller's
    Architecture is only updated when the whole call succeeds.

    :param effs: genetic architecture; re-calibrated in place while selection is off
    :param FR: fixed and random effect specification
    :param cv: {"fam": [...]} or {"pop": [...]} C.V. targets
    :param pop: population table
    :param pop_geno: markers x individuals (or 2 x individuals) genotype matrix
    :param pos_map: marker map, needed by genomic evaluation
    :param var_pheno: phenotype variance (one per trait)
    :param h2_tr1: heritability of a, d, aa, ad, da and dd of a single trait
    :param gnt_cov: genetic covariance matrix among traits
    :param h2_trn: heritability of every trait in multi-trait mode
    :param sel_crit: TBV, TGV, pheno, pEBVs, gEBVs or ssEBVs
    :param pop_total: population table of all generations, used as pedigree
    :param sel_on: whether selection is applied in this generation
    :param evaluator: genomic evaluator for EBV criteria
    :param multrait: multi-trait mode when ``effs`` is not given
    :param rng: numpy random generator
    :return: PhenotypeResult with the new population table
    """
    rng = rng if rng is not None else np.random.default_rng()
    if pop is None:
        raise ValueError("Population table is required")
    nind = pop.shape[0]
    if effs is not None:
        multrait = effs.multrait

    # validate everything before any numeric work
    criterion = Criterion.parse(sel_crit)
    if criterion.is_ebv and evaluator is None:
        raise ValueError(f"A genomic evaluator is required for the {criterion.value} criterion")
    if multrait:
        gnt_cov = check_cov(gnt_cov)
        nqt = gnt_cov.shape[0]
        if effs is not None and effs.n_traits != nqt:
            raise InvalidDimensions(
                f"Genetic covariance matrix has {nqt} traits but the architecture has {effs.n_traits}"
            )
    else:
        nqt = 1
    validate_cv(cv, nqt)
    if FR is not None:
        validate_fr(pop, FR)
    if var_pheno is not None:
        var_pheno = np.atleast_1d(np.asarray(var_pheno, dtype=float))
        if len(var_pheno) != nqt:
            raise InvalidDimensions(f"{nqt} phenotype variances are required, got {len(var_pheno)}")

    geno = None
    if pop_geno is not None:
        geno = geno_cvt(pop_geno, num_ind=nind)
    use_geno = geno is not None and effs is not None
    if use_geno:
        if multrait:
            h2_trn = check_h2(h2_trn, nqt)[:nqt]
            if np.any(h2_trn == 0):
                raise HeritabilityOutOfRange("Heritability of every trait should be more than 0 in multiple traits!")
        else:
            check_h2(h2_tr1, len(effs[0].effects.components))

    working = effs.copy() if effs is not None else None

    if multrait:
        nts = trait_names(nqt)
        if use_geno:
            df_ind_a = cal_gnt_multi(geno, working, gnt_cov, sel_on=sel_on)
            if var_pheno is None:
                var_pheno = np.diag(df_ind_a.cov().to_numpy()) / h2_trn
        else:
            df_ind_a = pd.DataFrame(np.zeros((nind, nqt)), columns=nts)
            if var_pheno is None:
                var_pheno = rng.choice(np.arange(1, 101), size=nqt, replace=False).astype(float)
        logger.info(f"Phenotype variance of traits: {np.round(var_pheno, 6).tolist()}")
        fr_tables, pop_out = (cal_fr(pop, FR, var_pheno, rng) if FR is not None else (None, pop.copy()))
        out = cal_pheno_multi(fr_tables, df_ind_a, var_pheno, rng)
    else:
        if use_geno:
            info_eff, _, var_p = cal_gnt(
                geno, h2=h2_tr1, effs=working,
                var_pheno=None if var_pheno is None else float(var_pheno[0]), sel_on=sel_on,
            )
        else:
            info_eff = None
            var_p = float(var_pheno[0]) if var_pheno is not None else float(rng.integers(1, 101))
        logger.info(f"Phenotype variance of trait 1: {var_p}")
        fr_tables, pop_out = (cal_fr(pop, FR, [var_p], rng) if FR is not None else (None, pop.copy()))
        out = cal_pheno(fr_tables[0] if fr_tables else None, info_eff, nind, var_p, rng)

    result = PhenotypeResult(out["info_tr"], out["info_eff"], out["info_pheno"], fr=fr_tables)
    check_effect_correlation(result.info_eff)
    adjust_cv(result, pop_out, cv)

    if criterion.is_ebv:
        request = build_request(result, pop_out, geno, pos_map, pop_total, fr_tables, criterion)
        try:
            resolve_ebv(result, request, evaluator)
        except ExternalEvaluationFailure as err:
            # hand back the decomposition so the caller can select on a non-EBV criterion
            result.pop = set_pheno(pop_out, result.info_pheno, Criterion.PHENO)
            result.effs = working
            err.result = result
            raise

    result.pop = set_pheno(pop_out, result.info_pheno, criterion)
    if effs is not None:
        effs.update(working)
    result.effs = effs
    return result
