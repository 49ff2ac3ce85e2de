from typing import Optional, Tuple

import numpy as np
import pandas as pd

from phenosim.errors import InvalidDimensions
from phenosim.log import logger


def _as_matrix(pop_geno) -> np.ndarray:
    if isinstance(pop_geno, pd.DataFrame):
        pop_geno = pop_geno.to_numpy()
    geno = np.asarray(pop_geno, dtype=float)
    if geno.ndim != 2:
        raise InvalidDimensions("Genotype matrix must be 2D (markers x individuals).")
    return geno


def geno_cvt(pop_geno, num_ind: Optional[int] = None, incols: Optional[int] = None) -> np.ndarray:
    """
    Return a markers x individuals dosage matrix.

    A matrix with two haplotype columns per individual (columns 2i and 2i+1)
    is collapsed by summing each pair of columns.

    :param pop_geno: genotype matrix (numpy array or DataFrame), markers in rows
    :param num_ind: number of individuals; decides between 1 and 2 columns per individual
    :param incols: columns per individual when ``num_ind`` is unknown (1 or 2)
    """
    geno = _as_matrix(pop_geno)
    ncol = geno.shape[1]
    if num_ind is not None:
        if ncol == 2 * num_ind and num_ind > 0:
            incols = 2
        elif ncol == num_ind:
            incols = 1
        else:
            raise InvalidDimensions(
                f"Genotype matrix is not match population information! "
                f"({ncol} columns for {num_ind} individuals)"
            )
    if incols is None:
        incols = 1
    if incols == 2:
        if ncol % 2 != 0:
            raise InvalidDimensions("Genotype matrix with two columns per individual must have an even column count.")
        geno = geno[:, 0::2] + geno[:, 1::2]
    elif incols != 1:
        raise InvalidDimensions(f"incols must be 1 or 2, got {incols}")
    return impute_missing(geno)


def impute_missing(geno: np.ndarray) -> np.ndarray:
    """Replace missing dosages by the mean dosage of their marker."""
    mask = np.isnan(geno)
    if not mask.any():
        return geno
    geno = geno.copy()
    with np.errstate(invalid="ignore"):
        means = np.nanmean(np.where(mask.all(axis=1, keepdims=True), 0.0, geno), axis=1)
    means = np.nan_to_num(means)
    rows, cols = np.nonzero(mask)
    geno[rows, cols] = means[rows]
    logger.warning(f"Imputed {int(mask.sum())} missing genotypes with marker mean dosage.")
    return geno


def maf(geno: np.ndarray) -> np.ndarray:
    """Minor allele frequency of every marker (rows) of a dosage matrix."""
    if geno.shape[1] == 0:
        return np.zeros(geno.shape[0])
    p_alt = np.nanmean(geno, axis=1) / 2.0
    return np.minimum(p_alt, 1.0 - p_alt)


def split_halves(n_qtn: int) -> Tuple[np.ndarray, np.ndarray]:
    """Row indices of the first and second half of a QTN set, used by interaction effects."""
    half = n_qtn // 2
    return np.arange(half), np.arange(half, 2 * half)
