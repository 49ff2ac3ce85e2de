import math
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from phenosim.errors import HeritabilityOutOfRange, InvalidDimensions
from phenosim.geno import split_halves
from phenosim.log import logger
from phenosim.model import COMPONENTS, Architecture


COMPONENT_LABELS = {
    "a": "additive",
    "d": "dominance",
    "aa": "additiveXadditive",
    "ad": "additiveXdominance",
    "da": "dominanceXadditive",
    "dd": "dominanceXdominance",
}


def additive_code(qtn: np.ndarray) -> np.ndarray:
    """Change dosage code from (0, 1, 2) to (-1, 0, 1)."""
    return qtn - 1.0


def dominance_code(qtn: np.ndarray) -> np.ndarray:
    """Change dosage code from (0, 1, 2) to (-0.5, 0.5, -0.5)."""
    return np.where(qtn == 2, 0.0, qtn) - 0.5


def sample_var(x) -> float:
    x = np.asarray(x, dtype=float)
    if x.size < 2:
        return float("nan")
    return float(np.var(x, ddof=1))


def check_h2(h2: Sequence[float], n_comp: int = 1) -> np.ndarray:
    h2 = np.atleast_1d(np.asarray(h2, dtype=float))
    if len(h2) < n_comp:
        raise InvalidDimensions(f"{n_comp} heritabilities are required, got {len(h2)}")
    used = h2[:n_comp]
    if np.any(np.isnan(used)) or np.any(used < 0) or np.any(used > 1):
        raise HeritabilityOutOfRange("Heritability should be no more than 1 and no less than 0!")
    return h2


def component_codes(qtn: np.ndarray, components: Sequence[str]) -> dict:
    """Genotype code matrices (QTNs x individuals) of every requested component."""
    qtn_a = additive_code(qtn)
    codes = {"a": qtn_a}
    if len(components) > 1:
        qtn_d = dominance_code(qtn)
        codes["d"] = qtn_d
        if len(components) > 2:
            # interactions pair the first half of the QTNs with the second half
            first, second = split_halves(qtn.shape[0])
            codes["aa"] = qtn_a[first] * qtn_a[second]
            codes["ad"] = qtn_a[first] * qtn_d[second]
            codes["da"] = qtn_d[first] * qtn_a[second]
            codes["dd"] = qtn_d[first] * qtn_d[second]
    return codes


def cal_gnt(
    geno: np.ndarray,
    h2: Sequence[float] = (0.3, 0.1, 0.05, 0.05, 0.05, 0.01),
    effs: Architecture = None,
    var_pheno: Optional[float] = None,
    sel_on: bool = True,
) -> Tuple[pd.DataFrame, pd.Series, float]:
    """
    Calculate the genetic values of a single trait.

    The additive values fix the phenotype variance (``var(ind_a) / h2[0]``)
    unless ``var_pheno`` is given, in which case the additive effects are
    rescaled to reach it. While selection is off, the other components are
    rescaled to ``var_pheno * h2[k]`` and the new effects are written back
    into ``effs``. Under selection the effects are used as they are.

    :param geno: markers x individuals dosage matrix
    :param h2: heritability of a, d, aa, ad, da and dd respectively
    :param effs: single-trait architecture, updated in place when effects are re-calibrated
    :param var_pheno: target phenotype variance
    :param sel_on: whether selection is applied in this generation
    :return: (decomposition table, variance of every component, phenotype variance)
    """
    if effs is None or effs.multrait:
        raise ValueError("cal_gnt requires a single-trait architecture")
    trait = effs[0]
    eff = trait.effects
    h2 = check_h2(h2, len(eff.components))

    qtn = geno[trait.markers, :]
    codes = component_codes(qtn, eff.components)

    ind_a = codes["a"].T @ eff.a
    var_add = sample_var(ind_a)

    # adjust effects according to var_pheno
    if var_pheno is not None:
        sel_on = False
        if var_add > 0:
            scale = math.sqrt(var_pheno * h2[0] / var_add)
            ind_a = ind_a * scale
            eff.set("a", eff.a * scale)
            logger.info("Adjust additive effects of markers...")
        else:
            logger.warning("Additive variance is zero; additive effects are not rescaled.")

    if h2[0] > 0:
        if var_pheno is None:
            var_pheno = sample_var(ind_a) / h2[0]
    else:
        ind_a = ind_a * 0
        if var_pheno is None:
            var_pheno = 1.0

    info_eff = pd.DataFrame({"ind_a": ind_a})
    logger.info(f"Total {COMPONENT_LABELS['a']:<20} variance: {sample_var(ind_a)}")

    for comp in eff.components[1:]:
        k = COMPONENTS.index(comp)
        values = codes[comp].T @ eff.get(comp)
        var_comp = sample_var(values)
        if not sel_on:
            if var_comp > 0:
                scale = math.sqrt(var_pheno * h2[k] / var_comp)
                values = values * scale
                eff.set(comp, eff.get(comp) * scale)
            logger.info(f"Adjust {COMPONENT_LABELS[comp]} effects of markers...")
        info_eff[f"ind_{comp}"] = values
        logger.info(f"Total {COMPONENT_LABELS[comp]:<20} variance: {sample_var(values)}")

    var_gnt = info_eff.var()
    return info_eff, var_gnt, float(var_pheno)
