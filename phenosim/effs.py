from typing import Optional, Sequence, Union

import numpy as np

from phenosim.errors import InvalidDimensions, UnevenQTNCount
from phenosim.geno import geno_cvt, maf as marker_maf
from phenosim.log import logger
from phenosim.model import MODELS, Architecture, EffectDist, TraitArchitecture, effects_for_model


DEFAULT_SD = (0.4, 0.2, 0.02, 0.02, 0.02, 0.02, 0.02, 0.001)


# ------------------------
# Helpers
# ------------------------

def marker_weights(geno: np.ndarray, qtn_spot: Sequence[float] = (0.1,) * 10, maf: float = 0.0) -> np.ndarray:
    """
    Selection weight of every marker.

    Markers are split into ``len(qtn_spot)`` contiguous blocks of equal size (the
    remainder goes to the last block) and every block shares its QTN
    probability equally among its markers. Markers below the MAF floor get 0.

    :param geno: markers x individuals dosage matrix
    :param qtn_spot: QTN probability of every block
    :param maf: minor allele frequency floor
    """
    num_marker = geno.shape[0]
    qtn_spot = np.asarray(qtn_spot, dtype=float)
    num_block = len(qtn_spot)
    if num_block == 0:
        raise InvalidDimensions("qtn_spot must contain at least one block")
    len_block = num_marker // num_block
    tail_block = num_marker % num_block + len_block
    num_inblock = np.array([len_block] * (num_block - 1) + [tail_block], dtype=int)
    with np.errstate(divide="ignore", invalid="ignore"):
        per_marker = np.where(num_inblock > 0, qtn_spot / num_inblock, 0.0)
    wt_marker = np.repeat(per_marker, num_inblock)

    if maf != 0:
        wt_marker[marker_maf(geno) < maf] = 0.0
    return wt_marker


def _sample_markers(wt_marker: np.ndarray, num_qtn: int, rng: np.random.Generator) -> np.ndarray:
    if num_qtn == 0:
        return np.zeros(0, dtype=int)
    n_positive = int(np.count_nonzero(wt_marker > 0))
    if n_positive < num_qtn:
        raise ValueError(
            f"Too few markers with positive selection weight ({n_positive}) to select {num_qtn} QTNs; "
            f"try a lower maf or a different qtn_spot."
        )
    prob = wt_marker / wt_marker.sum()
    return rng.choice(len(wt_marker), size=num_qtn, replace=False, p=prob)


def _draw(dist: EffectDist, n: int, sd: float, rng: np.random.Generator) -> np.ndarray:
    if dist.dist == "normal":
        return rng.normal(0.0, sd, n)
    if dist.dist == "geometric":
        # failures before the first success
        return (rng.geometric(dist.prob, n) - 1).astype(float)
    if dist.dist == "gamma":
        return rng.gamma(dist.shape, dist.scale, n)
    if dist.dist == "beta":
        if dist.ncp == 0:
            return rng.beta(dist.shape1, dist.shape2, n)
        x = rng.noncentral_chisquare(2 * dist.shape1, dist.ncp, n)
        y = rng.chisquare(2 * dist.shape2, n)
        return x / (x + y)
    raise ValueError(f"Please input a right QTN effect distribution: {dist.dist}")


# ------------------------
# Effects
# ------------------------

def cal_eff(num_qtn: Union[int, Sequence[int]], eff_sd: Union[float, Sequence[float]],
            dist: Union[str, dict, EffectDist] = "normal", rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Draw the effects of the QTNs of one genetic component.

    :param num_qtn: number of QTNs, or one count per QTN group
    :param eff_sd: standard deviation of the normal effects of every QTN group
    :param dist: effect distribution: "normal", "geometric", "gamma" or "beta"
    :param rng: numpy random generator
    :return: concatenated effects of all QTN groups
    """
    rng = rng if rng is not None else np.random.default_rng()
    dist = EffectDist.from_dict(dist)
    num_qtn = np.atleast_1d(np.asarray(num_qtn, dtype=int))
    if num_qtn.sum() == 0:
        return np.zeros(0)
    eff_sd = np.atleast_1d(np.asarray(eff_sd, dtype=float))
    if dist.dist == "normal" and len(eff_sd) < len(num_qtn):
        raise InvalidDimensions(
            f"{len(num_qtn)} QTN groups need as many standard deviations, got {len(eff_sd)}"
        )
    blocks = []
    for i, nq in enumerate(num_qtn):
        sd = eff_sd[i] if i < len(eff_sd) else eff_sd[-1]
        blocks.append(_draw(dist, int(nq), sd, rng))
    return np.concatenate(blocks).astype(float)


def cal_effs(
    geno,
    cal_model: str = "A",
    num_qtn: Union[int, Sequence[int]] = (2, 6, 10),
    sd: Sequence[float] = DEFAULT_SD,
    dists: Optional[Sequence[Union[str, dict, EffectDist]]] = None,
    multrait: bool = False,
    num_qtn_trn=((18, 10), (10, 20)),
    sd_trn=((1.0, 0.0), (0.0, 0.5)),
    qtn_spot: Sequence[float] = (0.1,) * 10,
    maf: float = 0.0,
    incols: int = 1,
    rng: Optional[np.random.Generator] = None,
) -> Architecture:
    """
    Select causal markers and draw their effects.

    :param geno: markers x individuals dosage matrix (or two columns per individual with ``incols=2``)
    :param cal_model: genetic model of a single trait: "A", "AD" or "ADI"
    :param num_qtn: QTN count, or one count per QTN group, of a single trait
    :param sd: standard deviations; the first ``len(num_qtn)`` entries belong to the additive
        QTN groups, the next five to d, aa, ad, da and dd respectively
    :param dists: effect distribution of every component (a, d, aa, ad, da, dd); default normal
    :param multrait: whether to simulate several correlated traits (A model only)
    :param num_qtn_trn: symmetric QTN matrix; diagonal = trait-private QTNs, off-diagonal = QTNs
        shared by two traits
    :param sd_trn: matrix whose diagonal holds the effect standard deviation of every trait
    :param qtn_spot: QTN probability of every marker block
    :param maf: minor allele frequency floor of candidate markers
    :param incols: genotype columns per individual (1 or 2)
    :param rng: numpy random generator
    :return: Architecture with the selected markers and their effects
    """
    rng = rng if rng is not None else np.random.default_rng()

    if multrait:
        num_qtn_trn = np.asarray(num_qtn_trn, dtype=int)
        sd_trn = np.asarray(sd_trn, dtype=float)
        if num_qtn_trn.ndim != 2 or num_qtn_trn.shape[0] != num_qtn_trn.shape[1] \
                or np.any(num_qtn_trn != num_qtn_trn.T):
            raise InvalidDimensions("num_qtn_trn should be symmetric matrix!")
        if num_qtn_trn.shape != sd_trn.shape:
            raise InvalidDimensions("non-conformable arrays: num_qtn_trn and sd_trn differ in shape!")
    else:
        if cal_model not in MODELS:
            raise ValueError(f"Unsupported genetic model '{cal_model}', choose from {list(MODELS)}")
        num_qtn = np.atleast_1d(np.asarray(num_qtn, dtype=int))
        sd = np.atleast_1d(np.asarray(sd, dtype=float))
        len_qtn = len(num_qtn)
        n_comp = len(MODELS[cal_model])
        need_sd = len_qtn + n_comp - 1
        if len(sd) < need_sd:
            raise InvalidDimensions(
                f"The length of sd should be no less than {need_sd} for the {cal_model} model!"
            )
        if cal_model == "ADI" and int(num_qtn.sum()) % 2 != 0:
            raise UnevenQTNCount("The number of qtn should be even in the ADI model!")
        dists = list(dists) if dists is not None else ["normal"] * 6
        if len(dists) < n_comp:
            raise InvalidDimensions(f"The {cal_model} model needs {n_comp} effect distributions, got {len(dists)}")
        dists = [EffectDist.from_dict(d) for d in dists]

    geno = geno_cvt(geno, incols=incols)
    num_marker = geno.shape[0]
    wt_marker = marker_weights(geno, qtn_spot=qtn_spot, maf=maf)

    if multrait:
        nqt = num_qtn_trn.shape[0]
        total = int(np.tril(num_qtn_trn, -1).sum() + np.trace(num_qtn_trn))
        sel_marker = _sample_markers(wt_marker, total, rng)
        mrk = [[] for _ in range(nqt)]
        k = 0
        for i in range(nqt):
            for j in range(i, nqt):
                num_t = int(num_qtn_trn[i, j])
                mrk_t = sel_marker[k:k + num_t].tolist()
                mrk[i].extend(mrk_t)
                if i != j:
                    mrk[j].extend(mrk_t)
                k += num_t
        traits = []
        for i in range(nqt):
            eff_a = rng.normal(0.0, sd_trn[i, i], len(mrk[i]))
            traits.append(TraitArchitecture(mrk[i], effects_for_model("A", a=eff_a)))
            logger.info(f"Number of selected markers of trait {i + 1}: {len(mrk[i])}")
        return Architecture(traits, multrait=True)

    total = int(num_qtn.sum())
    if total > num_marker:
        raise InvalidDimensions(f"Cannot select {total} QTNs from {num_marker} markers")
    sel_marker = np.sort(_sample_markers(wt_marker, total, rng))
    logger.info(f"Number of selected markers of trait 1: {num_qtn.tolist()}")
    logger.info(f"Apply {cal_model} model...")

    effects = {"a": cal_eff(num_qtn, sd[:len_qtn], dists[0], rng)}
    if cal_model in ("AD", "ADI"):
        effects["d"] = cal_eff(total, sd[len_qtn], dists[1], rng)
    if cal_model == "ADI":
        ophalf = total // 2
        for k, comp in enumerate(("aa", "ad", "da", "dd")):
            effects[comp] = cal_eff(ophalf, sd[len_qtn + 1 + k], dists[2 + k], rng)

    trait = TraitArchitecture(sel_marker, effects_for_model(cal_model, **effects))
    return Architecture([trait], multrait=False)
