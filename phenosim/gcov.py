from typing import Sequence, Union

import numpy as np
import pandas as pd

from phenosim.errors import InvalidDimensions, NonSymmetricCovariance
from phenosim.gnt import additive_code
from phenosim.log import logger
from phenosim.model import Architecture, trait_names


def check_cov(sigma) -> np.ndarray:
    sigma = np.atleast_2d(np.asarray(sigma, dtype=float))
    if sigma.ndim != 2 or sigma.shape[0] != sigma.shape[1] or not np.allclose(sigma, sigma.T):
        raise NonSymmetricCovariance("Genetic covariance matrix should be a symmetric matrix!")
    return sigma


def _sqrt_factor(cov: np.ndarray) -> np.ndarray:
    """Return L with L @ L.T == cov."""
    try:
        return np.linalg.cholesky(cov)
    except np.linalg.LinAlgError:
        vals, vecs = np.linalg.eigh(cov)
        tol = 1e-8 * max(1.0, float(np.abs(vals).max()))
        if vals.min() < -tol:
            raise ValueError("Covariance matrix should be positive semi-definite!")
        return vecs * np.sqrt(np.clip(vals, 0.0, None))


def _inv_sqrt_factor(cov: np.ndarray) -> np.ndarray:
    """Return W with W @ cov @ W.T == I (a projection when cov is singular)."""
    try:
        return np.linalg.inv(np.linalg.cholesky(cov))
    except np.linalg.LinAlgError:
        vals, vecs = np.linalg.eigh(cov)
        tol = 1e-10 * max(1.0, float(np.abs(vals).max()))
        keep = vals > tol
        logger.warning(
            f"Current covariance matrix is singular (rank {int(keep.sum())} of {len(vals)}); "
            f"the target covariance can only be matched on its non-degenerate part."
        )
        inv_sqrt = np.zeros_like(vals)
        inv_sqrt[keep] = 1.0 / np.sqrt(vals[keep])
        return (vecs * inv_sqrt) @ vecs.T


def build_cov(df: Union[pd.DataFrame, np.ndarray], Sigma) -> np.ndarray:
    """
    Transform the columns of ``df`` so that their empirical covariance equals ``Sigma``.

    The centred data are whitened with the inverse Cholesky factor of their
    own covariance, coloured with the Cholesky factor of ``Sigma``, and the
    column means are restored.

    :param df: individuals x traits values
    :param Sigma: target covariance matrix
    """
    X = np.asarray(df, dtype=float)
    if X.ndim == 1:
        X = X[:, None]
    Sigma = check_cov(Sigma)
    n, p = X.shape
    if Sigma.shape[0] != p:
        raise InvalidDimensions(f"Covariance matrix of {Sigma.shape[0]} traits does not fit {p} value columns")
    if n < 2:
        raise InvalidDimensions("At least two individuals are required to build a covariance structure")

    mu = X.mean(axis=0)
    Xc = X - mu
    S = np.atleast_2d(np.cov(Xc, rowvar=False, ddof=1))
    W = _inv_sqrt_factor(S)
    L = _sqrt_factor(Sigma)
    return Xc @ W.T @ L.T + mu


def cal_gnt_multi(geno: np.ndarray, effs: Architecture, gnt_cov, sel_on: bool = True) -> pd.DataFrame:
    """
    Calculate correlated additive genetic values of several traits.

    Without selection the values are forced to the covariance ``gnt_cov`` and
    the additive effects of every trait are solved back from the new values
    with a Moore-Penrose inverse of its QTN genotype matrix; ``effs`` is
    updated in place. Under selection the raw values are returned.

    :param geno: markers x individuals dosage matrix
    :param effs: multi-trait architecture
    :param gnt_cov: target genetic covariance matrix among traits
    :param sel_on: whether selection is applied in this generation
    :return: individuals x traits additive values (columns tr1, tr2, ...)
    """
    gnt_cov = check_cov(gnt_cov)
    if not effs.multrait:
        raise ValueError("cal_gnt_multi requires a multi-trait architecture")
    nqt = gnt_cov.shape[0]
    if effs.n_traits != nqt:
        raise InvalidDimensions(
            f"Genetic covariance matrix has {nqt} traits but the architecture has {effs.n_traits}"
        )

    nts = trait_names(nqt)
    qtns = [additive_code(geno[trait.markers, :]) for trait in effs]
    df_ind_a = pd.DataFrame({nts[i]: qtns[i].T @ trait.effects.a for i, trait in enumerate(effs)})

    if not sel_on:
        logger.info("Build genetic correlation for traits...")
        df_ind_a = pd.DataFrame(build_cov(df_ind_a, gnt_cov), columns=nts)

        logger.info("Adjust effects of markers...")
        for i, trait in enumerate(effs):
            eff_a = np.linalg.pinv(qtns[i].T) @ df_ind_a[nts[i]].to_numpy()
            trait.effects.set("a", eff_a)
    return df_ind_a


def genetic_summary(df_ind_a: pd.DataFrame, var_fr: Union[float, Sequence[float]], var_env: pd.DataFrame) -> dict:
    """
    Variance summary of correlated traits.

    :param df_ind_a: additive values of every trait
    :param var_fr: random effect variance of every trait
    :param var_env: environmental covariance matrix
    :return: dict with Covg, Cove, h2 and gnt_cor
    """
    var_add = df_ind_a.cov()
    diag_add = np.diag(var_add.to_numpy())
    diag_env = np.diag(np.asarray(var_env, dtype=float))
    h2 = diag_add / (diag_add + np.asarray(var_fr, dtype=float) + diag_env)
    nqt = df_ind_a.shape[1]
    if np.any(diag_add == 0):
        gnt_cor = pd.DataFrame(np.zeros((nqt, nqt)), index=df_ind_a.columns, columns=df_ind_a.columns)
    else:
        gnt_cor = df_ind_a.corr()
    return {
        "Covg": var_add,
        "Cove": var_env,
        "h2": pd.Series(h2, index=df_ind_a.columns),
        "gnt_cor": gnt_cor,
    }
