from typing import Optional, Tuple

import numpy as np
import pandas as pd

from phenosim.errors import InconsistentCVSpec, InvalidDimensions
from phenosim.log import logger
from phenosim.model import PhenotypeResult


def validate_cv(cv: Optional[dict], nqt: int) -> Optional[Tuple[str, np.ndarray]]:
    """
    Check a coefficient of variation spec and return (group key, targets).

    :param cv: ``{"fam": [...]}`` for family C.V. or ``{"pop": [...]}`` for population C.V.
    :param nqt: number of traits
    """
    if cv is None:
        return None
    fam = cv.get("fam")
    pop = cv.get("pop")
    unknown = set(cv) - {"fam", "pop"}
    if unknown:
        raise InconsistentCVSpec(f"Unknown C.V. keys: {sorted(unknown)}")
    if (fam is None) == (pop is None):
        raise InconsistentCVSpec("cv should only has fam or pop!")
    key = "fam" if fam is not None else "pop"
    target = np.atleast_1d(np.asarray(cv[key], dtype=float))
    if len(target) != nqt:
        raise InvalidDimensions("The length of C.V. should be consistent with the number of traits!")
    return key, target


def adjust_cv(result: PhenotypeResult, pop: pd.DataFrame, cv: Optional[dict]) -> PhenotypeResult:
    """
    Shift phenotypes so that every family (or the whole population) reaches
    the target coefficient of variation.

    The shift ``sqrt(var) / cv - mean`` is added to the phenotype and merged
    into the ``mu`` column of the decomposition table. Groups whose variance
    is undefined (one member) or zero (constant phenotype) are not shifted.

    :param result: phenotype result, modified in place
    :param pop: population table with a ``fam`` column when calibrating families
    :param cv: ``{"fam": [...]}`` or ``{"pop": [...]}``, one target per trait
    """
    spec = validate_cv(cv, len(result.traits))
    if spec is None:
        return result
    key, target = spec
    logger.info("Adjust phenotype for C.V. ...")

    nind = result.info_pheno.shape[0]
    if key == "fam":
        if "fam" not in pop.columns:
            raise ValueError("Population table has no 'fam' column for family C.V. adjustment")
        groups = pop["fam"].to_numpy()
    else:
        groups = np.zeros(nind, dtype=int)

    for i in range(len(result.traits)):
        col = result.pheno_column(i)
        ph = result.info_pheno[col].reset_index(drop=True)
        grouped = ph.groupby(groups)
        g_var = grouped.transform("var")
        g_mu = grouped.transform("mean")
        flat = ~(g_var > 0)
        mu = (np.sqrt(g_var) / target[i] - g_mu).mask(flat, 0.0)
        n_skip = int(flat.sum())
        if n_skip:
            logger.info(f"{n_skip} individuals in groups without phenotype variance are not shifted.")

        table = result.eff_table(i)
        if "mu" in table.columns:
            table["mu"] = table["mu"].to_numpy() + mu.to_numpy()
        else:
            table.insert(0, "mu", mu.to_numpy())
        result.info_pheno[col] = ph.to_numpy() + mu.to_numpy()
    return result
