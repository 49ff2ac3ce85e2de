import math
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats as sstats

from phenosim.errors import InsufficientRandomLevels, MismatchedLevelEffect
from phenosim.gnt import sample_var
from phenosim.log import logger
from phenosim.model import FRSpec, LevelEffect


MIN_RAND_LEVELS = 50
NORMALITY_ALPHA = 0.05


# ------------------------
# Helpers
# ------------------------

def _level_str(v) -> str:
    if v is None or (isinstance(v, float) and math.isnan(v)):
        return "0"
    if isinstance(v, (float, np.floating)) and float(v).is_integer():
        return str(int(v))
    return str(v)


def _pop_levels(pop: pd.DataFrame, name: str) -> pd.Series:
    """Levels of an effect column as strings; missing values count as level "0"."""
    return pop[name].map(_level_str)


def _check_levels(pop: pd.DataFrame, name: str, spec: LevelEffect, kind: str):
    ele_pt = set(_pop_levels(pop, name).unique())
    if len(spec) != len(ele_pt):
        raise MismatchedLevelEffect(
            f"{name}: Level length ({len(spec)}) should be equal to the number of levels in the population ({len(ele_pt)})!"
        )
    if set(spec.level) != ele_pt:
        raise MismatchedLevelEffect(f"{name} in {kind} should be corresponding to {name} in the population!")


def normal_effects(eff: np.ndarray, rng: np.random.Generator, alpha: float = NORMALITY_ALPHA) -> np.ndarray:
    """
    Redraw random effect magnitudes from N(0, 1) until a Shapiro-Wilk test no
    longer rejects normality at ``alpha``. Magnitudes that already pass are
    kept as they are.
    """
    eff = np.asarray(eff, dtype=float).copy()
    n_draw = 0
    _, p = sstats.shapiro(eff)
    while p < alpha:
        eff = rng.standard_normal(len(eff))
        n_draw += 1
        _, p = sstats.shapiro(eff)
    if n_draw:
        logger.info(f"Random effects redrawn {n_draw} time(s) to pass the normality test.")
    return eff


def _individual_effects(pop: pd.DataFrame, pop_out: pd.DataFrame, name: str, lev: List[str], eff: np.ndarray,
                        combined: set, rng: np.random.Generator) -> np.ndarray:
    nind = pop.shape[0]
    if name in pop.columns:
        pt = _pop_levels(pop, name)
        return pt.map(dict(zip(lev, eff))).to_numpy(dtype=float)
    sam = rng.integers(0, len(lev), nind)
    if name in combined:
        logger.info(f"Add {name} to population...")
        pop_out[name] = [lev[s] for s in sam]
    return eff[sam]


# ------------------------
# Fixed and random effects
# ------------------------

def validate_fr(pop: pd.DataFrame, fr: FRSpec):
    """
    Check random effect level counts and the levels of effects already in the population.

    :param pop: population table
    :param fr: fixed and random effect specification
    """
    for name, spec in fr.rand.items():
        if spec is None:
            continue
        if len(spec) < MIN_RAND_LEVELS:
            raise InsufficientRandomLevels(
                f"{name}: Group number must be no less than {MIN_RAND_LEVELS} in random effects!"
            )
        if name in pop.columns:
            _check_levels(pop, name, spec, "rand")
    for name, spec in fr.fix.items():
        if spec is not None and name in pop.columns:
            _check_levels(pop, name, spec, "fix")


def cal_fr(pop: pd.DataFrame, fr: FRSpec, var_pheno: Union[float, Sequence[float]],
           rng: Optional[np.random.Generator] = None) -> Tuple[List[Dict[str, pd.DataFrame]], pd.DataFrame]:
    """
    Calculate fixed effects and random effects of every individual.

    Effects whose name is already a column of ``pop`` are looked up by level;
    the others get a random level per individual, and the drawn levels are
    added to the population table when some trait combines that effect.
    Random effect columns are scaled to ``var_pheno[i] * ratio`` of trait i.

    :param pop: population table
    :param fr: fixed and random effect specification
    :param var_pheno: phenotype variance of every trait
    :param rng: numpy random generator
    :return: (list of {"fix": DataFrame, "rand": DataFrame} per trait, population table with new columns)
    """
    rng = rng if rng is not None else np.random.default_rng()
    var_pheno = np.atleast_1d(np.asarray(var_pheno, dtype=float))
    len_tr = len(var_pheno)
    nind = pop.shape[0]
    validate_fr(pop, fr)

    pop_out = pop.copy()
    index = pd.RangeIndex(nind)

    # generate fixed effects of individuals
    fes = pd.DataFrame(index=index)
    combined_fix = fr.combined_fix()
    for name, spec in fr.fix.items():
        if spec is None:
            fes[name] = 0.0
            continue
        fes[name] = _individual_effects(pop, pop_out, name, spec.level, spec.eff, combined_fix, rng)

    # generate random effects of individuals
    res = pd.DataFrame(index=index)
    combined_rand = fr.combined_rand()
    for name, spec in fr.rand.items():
        if spec is None:
            res[name] = 0.0
            continue
        eff = normal_effects(spec.eff, rng)
        res[name] = _individual_effects(pop, pop_out, name, spec.level, eff, combined_rand, rng)

    out = []
    for i in range(len_tr):
        fix_tr = fes[fr.fix_names(i)].copy()
        rn, ratio = fr.rand_names(i)
        rand_tr = res[rn].copy()
        for name, r in zip(rn, ratio):
            v = sample_var(rand_tr[name])
            if v > 0:
                rand_tr[name] = rand_tr[name] * math.sqrt(var_pheno[i] * r / v)
            else:
                logger.warning(f"Random effect {name} of trait {i + 1} has no variance and is not scaled.")
        if rn:
            var_r = ", ".join(f"{name}={sample_var(rand_tr[name]):.6g}" for name in rn)
            logger.info(f"The variance of random effects of trait {i + 1}: {var_r}")
        out.append({"fix": fix_tr, "rand": rand_tr})
    return out, pop_out
