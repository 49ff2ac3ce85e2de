from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from phenosim.errors import ExternalEvaluationFailure
from phenosim.log import logger
from phenosim.model import PhenotypeResult


RESULT_PREFIXES = ("TBV", "TGV", "pheno", "ebv")


def _is_result_column(name, prefix: str) -> bool:
    name = str(name)
    return name == prefix or name.startswith(prefix + "_")


def result_columns(columns: Sequence) -> List[str]:
    """Columns of a table that hold computed TBV, TGV, phenotype or EBV values."""
    return [c for c in columns if any(_is_result_column(c, p) for p in RESULT_PREFIXES)]


class Criterion(Enum):
    """Selection criterion of a breeding program."""

    TBV = "TBV"
    TGV = "TGV"
    PHENO = "pheno"
    PEBV = "pEBVs"
    GEBV = "gEBVs"
    SSEBV = "ssEBVs"

    @classmethod
    def parse(cls, value: Union[str, "Criterion"]) -> "Criterion":
        if isinstance(value, Criterion):
            return value
        for crit in cls:
            if crit.value == value or crit.name == value:
                return crit
        raise ValueError(
            f"Please select correct selection criterion: '{value}' not in {[c.value for c in cls]}"
        )

    @property
    def is_ebv(self) -> bool:
        return self in (Criterion.PEBV, Criterion.GEBV, Criterion.SSEBV)

    @property
    def prefix(self) -> str:
        return "ebv" if self.is_ebv else self.value

    def columns(self, info_pheno: pd.DataFrame) -> List[str]:
        """Columns of ``info_pheno`` backing this criterion."""
        return [c for c in info_pheno.columns if _is_result_column(c, self.prefix)]


def set_pheno(pop: pd.DataFrame, info_pheno: pd.DataFrame, sel_crit: Union[str, Criterion]) -> pd.DataFrame:
    """
    Replace the result columns of the population table by the columns of
    the selection criterion.

    :param pop: population table
    :param info_pheno: TBV, TGV, phenotype (and EBV) of every individual
    :param sel_crit: selection criterion
    :return: a new population table
    """
    crit = Criterion.parse(sel_crit)
    stale = set(result_columns(pop.columns))
    out = pop[[c for c in pop.columns if c not in stale]].copy()
    cols = crit.columns(info_pheno)
    if not cols:
        logger.warning(f"No {crit.value} columns to add to the population table.")
    for c in cols:
        out[c] = info_pheno[c].to_numpy()
    return out


# ------------------------
# External genomic evaluation
# ------------------------

class EvaluationRequest:
    """Everything a genomic evaluator needs to estimate breeding values.

    :param pheno: id column followed by one phenotype column per trait
    :param bivar_pos: positions of the trait columns in ``pheno`` for a multi-trait evaluation
    :param geno: markers x individuals dosage matrix
    :param map: marker map (chromosome, position, marker id)
    :param geno_id: individual ids in genotype column order
    :param pedigree: id, sire and dam of every individual
    :param mode: "A" or "AD"
    :param fixed: fixed effect design matrix of every trait (intercept first)
    :param random: random effect table of every trait
    :param criterion: pEBVs, gEBVs or ssEBVs
    """

    def __init__(self, pheno: pd.DataFrame, bivar_pos: Optional[List[int]], geno: Optional[np.ndarray],
                 map: Optional[pd.DataFrame], geno_id: List[str], pedigree: pd.DataFrame, mode: str,
                 fixed: List[pd.DataFrame], random: List[pd.DataFrame], criterion: Criterion):
        self.pheno = pheno
        self.bivar_pos = bivar_pos
        self.geno = geno
        self.map = map
        self.geno_id = geno_id
        self.pedigree = pedigree
        self.mode = mode
        self.fixed = fixed
        self.random = random
        self.criterion = criterion

    @property
    def multrait(self) -> bool:
        return self.bivar_pos is not None


class EvaluationResult:
    """Response of a genomic evaluator: EBVs keyed by id, or an error message."""

    def __init__(self, ebv: Optional[pd.DataFrame] = None, error: Optional[str] = None):
        self.ebv = ebv
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None and self.ebv is not None

    @classmethod
    def failure(cls, error: str) -> "EvaluationResult":
        return cls(error=error)


class GenomicEvaluator(ABC):
    """Interface of an external genomic evaluation engine (BLUP / GBLUP / ssBLUP)."""

    @abstractmethod
    def evaluate(self, request: EvaluationRequest) -> EvaluationResult:
        """Estimate breeding values; report failures through ``EvaluationResult.failure``."""


Evaluator = Union[GenomicEvaluator, Callable[[EvaluationRequest], EvaluationResult]]


def _design(fix: Optional[pd.DataFrame], nind: int) -> pd.DataFrame:
    design = pd.DataFrame({"intercept": np.ones(nind)})
    if fix is not None:
        for c in fix.columns:
            design[c] = fix[c].to_numpy(dtype=float)
    return design


def build_request(result: PhenotypeResult, pop: pd.DataFrame, geno: Optional[np.ndarray],
                  pos_map: Optional[pd.DataFrame], pop_total: Optional[pd.DataFrame],
                  fr: Optional[List[dict]], criterion: Union[str, Criterion]) -> EvaluationRequest:
    """
    Assemble the request sent to the genomic evaluator.

    :param result: phenotype result of the generation
    :param pop: population table (``index`` column holds the individual ids)
    :param geno: markers x individuals dosage matrix
    :param pos_map: marker map; only the first three columns are sent
    :param pop_total: table of all generations used for the pedigree; defaults to ``pop``
    :param fr: fixed and random effect tables of every trait
    :param criterion: EBV criterion
    """
    criterion = Criterion.parse(criterion)
    nind = pop.shape[0]
    ids = pop["index"].astype(str).tolist()

    pheno = pd.DataFrame({"index": ids})
    for i in range(len(result.traits)):
        col = result.pheno_column(i)
        pheno[col] = result.info_pheno[col].to_numpy()
    bivar_pos = list(range(1, pheno.shape[1])) if pheno.shape[1] > 2 else None

    ped_src = pop_total if pop_total is not None else pop
    pedigree = ped_src[["index", "sir", "dam"]].astype(str).reset_index(drop=True)

    mode = "AD" if "ind_d" in result.eff_table(0).columns else "A"

    fixed, random = [], []
    for i in range(len(result.traits)):
        tables = fr[i] if fr else None
        fixed.append(_design(tables["fix"] if tables else None, nind))
        random.append(tables["rand"].copy() if tables else pd.DataFrame(index=pd.RangeIndex(nind)))

    return EvaluationRequest(
        pheno=pheno,
        bivar_pos=bivar_pos,
        geno=geno,
        map=pos_map.iloc[:, :3].copy() if pos_map is not None else None,
        geno_id=ids,
        pedigree=pedigree,
        mode=mode,
        fixed=fixed,
        random=random,
        criterion=criterion,
    )


def _call(evaluator: Evaluator, request: EvaluationRequest) -> EvaluationResult:
    try:
        if hasattr(evaluator, "evaluate"):
            response = evaluator.evaluate(request)
        else:
            response = evaluator(request)
    except Exception as e:
        raise ExternalEvaluationFailure(f"Something wrong when running genomic evaluation: {e}") from e
    if isinstance(response, pd.DataFrame):
        response = EvaluationResult(ebv=response)
    if not isinstance(response, EvaluationResult):
        raise ExternalEvaluationFailure(
            f"Genomic evaluator returned {type(response).__name__}, expected EvaluationResult"
        )
    if not response.ok:
        raise ExternalEvaluationFailure(f"Something wrong when running genomic evaluation: {response.error}")
    return response


def resolve_ebv(result: PhenotypeResult, request: EvaluationRequest, evaluator: Evaluator) -> PhenotypeResult:
    """
    Run the genomic evaluator and add its EBVs to ``result.info_pheno``.

    The first column of the evaluator's table is the individual id; the rest
    are EBV columns. Rows are matched to the population by id. A single-trait
    AD evaluation returns additive and dominance EBVs, which are summed into
    one ``ebv`` column.

    :param result: phenotype result, modified in place
    :param request: request built by :func:`build_request`
    :param evaluator: GenomicEvaluator instance or callable
    """
    logger.info(f"Run genomic evaluation for {request.criterion.value}...")
    response = _call(evaluator, request)
    gebv = response.ebv
    if gebv.shape[1] < 2:
        raise ExternalEvaluationFailure("Genomic evaluator should return an id column and EBV columns")

    ids = gebv.iloc[:, 0].astype(str)
    ebv = gebv.iloc[:, 1:].apply(pd.to_numeric, errors="coerce")
    ebv.index = ids.to_numpy()
    ebv = ebv[~ebv.index.duplicated(keep="first")].reindex(request.geno_id)
    n_miss = int(ebv.isna().all(axis=1).sum())
    if n_miss:
        logger.warning(f"{n_miss} individuals got no EBV from the genomic evaluator.")

    if not result.multrait and request.mode == "AD":
        ebv = ebv.sum(axis=1, min_count=1).to_frame("ebv")

    if result.multrait and ebv.shape[1] == len(result.traits):
        names = [f"ebv_{tr}" for tr in result.traits]
    elif not result.multrait and ebv.shape[1] == 1:
        names = ["ebv"]
    else:
        names = [f"ebv_{c}" for c in ebv.columns]

    for name in result_columns(result.info_pheno.columns):
        if _is_result_column(name, "ebv"):
            del result.info_pheno[name]
    for name, c in zip(names, ebv.columns):
        result.info_pheno[name] = ebv[c].to_numpy()
    result.info_ebv = gebv
    return result
