"""Data model shared by the phenotype simulation stages.

- QTN effect variants, one per genetic model (A, AD, ADI)
- trait and population architecture (the calibration context)
- fixed / random effect specification
- phenotype result container
- JSON configuration loading
"""
from __future__ import annotations

import json
import os
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from phenosim.errors import InvalidDimensions, MismatchedLevelEffect, UnevenQTNCount


COMPONENTS = ("a", "d", "aa", "ad", "da", "dd")
INTERACTIONS = ("aa", "ad", "da", "dd")
MODELS = {
    "A": ("a",),
    "AD": ("a", "d"),
    "ADI": COMPONENTS,
}


# ------------------------
# QTN effect distribution
# ------------------------

class EffectDist:
    """Distribution of the QTN effects of one genetic component."""

    DISTS = ("normal", "geometric", "gamma", "beta")

    def __init__(self, dist: str = "normal", prob: float = 0.5, shape: float = 1.0, scale: float = 1.0,
                 shape1: float = 1.0, shape2: float = 1.0, ncp: float = 0.0):
        # "geometry" is the historical spelling of the geometric tag
        if dist == "geometry":
            dist = "geometric"
        if dist not in self.DISTS:
            raise ValueError(f"Unsupported QTN effect distribution '{dist}', choose from {self.DISTS}")
        self.dist = dist
        self.prob = float(prob)
        self.shape = float(shape)
        self.scale = float(scale)
        self.shape1 = float(shape1)
        self.shape2 = float(shape2)
        self.ncp = float(ncp)

    @classmethod
    def from_dict(cls, data: Union[str, dict, "EffectDist"]) -> "EffectDist":
        if isinstance(data, EffectDist):
            return data
        if isinstance(data, str):
            return cls(dist=data)
        return cls(**data)

    def to_dict(self) -> dict:
        return {
            "dist": self.dist,
            "prob": self.prob,
            "shape": self.shape,
            "scale": self.scale,
            "shape1": self.shape1,
            "shape2": self.shape2,
            "ncp": self.ncp,
        }

    def __repr__(self):
        return f"EffectDist({self.dist})"


# ------------------------
# QTN effects per genetic model
# ------------------------

class QTNEffects:
    """Effect vectors of one trait; subclasses fix the set of components."""

    model: str = ""
    components: Tuple[str, ...] = ()

    def __init__(self, **effects):
        for comp in self.components:
            setattr(self, comp, np.asarray(effects[comp], dtype=float).ravel())

    def get(self, comp: str) -> np.ndarray:
        if comp not in self.components:
            raise KeyError(f"Component '{comp}' is not part of the {self.model} model")
        return getattr(self, comp)

    def set(self, comp: str, values) -> None:
        values = np.asarray(values, dtype=float).ravel()
        if len(values) != len(self.get(comp)):
            raise InvalidDimensions(
                f"Effect vector of '{comp}' must keep length {len(self.get(comp))}, got {len(values)}"
            )
        setattr(self, comp, values)

    def items(self):
        return [(comp, getattr(self, comp)) for comp in self.components]

    def copy(self) -> "QTNEffects":
        return type(self)(**{comp: vals.copy() for comp, vals in self.items()})

    def to_dict(self) -> dict:
        return {comp: vals.tolist() for comp, vals in self.items()}

    def __repr__(self):
        sizes = ", ".join(f"{comp}={len(vals)}" for comp, vals in self.items())
        return f"{type(self).__name__}({sizes})"


class AEffects(QTNEffects):
    model = "A"
    components = MODELS["A"]

    def __init__(self, a):
        super().__init__(a=a)


class ADEffects(QTNEffects):
    model = "AD"
    components = MODELS["AD"]

    def __init__(self, a, d):
        super().__init__(a=a, d=d)


class ADIEffects(QTNEffects):
    model = "ADI"
    components = MODELS["ADI"]

    def __init__(self, a, d, aa, ad, da, dd):
        super().__init__(a=a, d=d, aa=aa, ad=ad, da=da, dd=dd)


_EFFECT_TYPES = {
    "A": AEffects,
    "AD": ADEffects,
    "ADI": ADIEffects,
}


def effects_for_model(model: str, **effects) -> QTNEffects:
    """Build the effect variant matching ``model`` from keyword vectors."""
    if model not in _EFFECT_TYPES:
        raise ValueError(f"Unsupported genetic model '{model}', choose from {list(_EFFECT_TYPES)}")
    cls = _EFFECT_TYPES[model]
    missing = [comp for comp in cls.components if comp not in effects]
    if missing:
        raise InvalidDimensions(f"The {model} model requires effects for components: {missing}")
    return cls(**{comp: effects[comp] for comp in cls.components})


# ------------------------
# Architecture
# ------------------------

class TraitArchitecture:
    """Causal markers of a trait together with their effects."""

    def __init__(self, markers: Sequence[int], effects: QTNEffects):
        self.markers = np.asarray(markers, dtype=int).ravel()
        self.effects = effects
        n_qtn = len(self.markers)
        if len(effects.a) != n_qtn:
            raise InvalidDimensions(
                f"Additive effects ({len(effects.a)}) must match the number of QTNs ({n_qtn})"
            )
        if "d" in effects.components and len(effects.d) != n_qtn:
            raise InvalidDimensions(
                f"Dominance effects ({len(effects.d)}) must match the number of QTNs ({n_qtn})"
            )
        if effects.model == "ADI":
            if n_qtn % 2 != 0:
                raise UnevenQTNCount("The number of qtn should be even in the ADI model!")
            for comp in INTERACTIONS:
                if len(effects.get(comp)) != n_qtn // 2:
                    raise InvalidDimensions(
                        f"Interaction effects '{comp}' must have {n_qtn // 2} values, got {len(effects.get(comp))}"
                    )

    @property
    def model(self) -> str:
        return self.effects.model

    @property
    def num_qtn(self) -> int:
        return len(self.markers)

    def copy(self) -> "TraitArchitecture":
        return TraitArchitecture(self.markers.copy(), self.effects.copy())

    def to_dict(self) -> dict:
        return {"model": self.model, "markers": self.markers.tolist(), "effects": self.effects.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "TraitArchitecture":
        effects = effects_for_model(data.get("model", "A"), **data["effects"])
        return cls(data["markers"], effects)

    def __repr__(self):
        return f"TraitArchitecture(num_qtn={self.num_qtn}, effects={self.effects!r})"


class Architecture:
    """Genetic architecture of all traits.

    This is the calibration context of a generation: the genetic value stages
    rescale effect vectors in place while selection is off, and the caller
    reuses the re-calibrated architecture in later generations.
    """

    def __init__(self, traits: List[TraitArchitecture], multrait: bool = False):
        if not traits:
            raise InvalidDimensions("Architecture requires at least one trait")
        if not multrait and len(traits) != 1:
            raise InvalidDimensions("A single-trait architecture must hold exactly one trait")
        if multrait and any(t.model != "A" for t in traits):
            raise ValueError("Only A model in multiple trait simulation!")
        self.traits = list(traits)
        self.multrait = bool(multrait)

    def __len__(self):
        return len(self.traits)

    def __getitem__(self, i: int) -> TraitArchitecture:
        return self.traits[i]

    def __iter__(self):
        return iter(self.traits)

    @property
    def n_traits(self) -> int:
        return len(self.traits)

    @property
    def model(self) -> str:
        return self.traits[0].model

    def copy(self) -> "Architecture":
        return Architecture([t.copy() for t in self.traits], multrait=self.multrait)

    def update(self, other: "Architecture") -> "Architecture":
        """Take over the markers and effects of ``other`` in place."""
        if other.n_traits != self.n_traits or other.multrait != self.multrait:
            raise InvalidDimensions("Cannot update an architecture from one with a different layout")
        self.traits = [t.copy() for t in other.traits]
        return self

    def to_dict(self) -> dict:
        return {"multrait": self.multrait, "traits": [t.to_dict() for t in self.traits]}

    @classmethod
    def from_dict(cls, data: dict) -> "Architecture":
        traits = [TraitArchitecture.from_dict(t) for t in data["traits"]]
        return cls(traits, multrait=data.get("multrait", False))

    def save(self, path: str) -> str:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        return path

    @classmethod
    def load(cls, path: str) -> "Architecture":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def __repr__(self):
        return f"Architecture(model={self.model}, n_traits={self.n_traits}, multrait={self.multrait})"


# ------------------------
# Fixed and random effects
# ------------------------

class LevelEffect:
    """Levels of a fixed or random effect and the magnitude of every level."""

    def __init__(self, level: Sequence, eff: Sequence[float], name: str = ""):
        self.name = name
        self.level = [str(lv) for lv in np.atleast_1d(level)]
        self.eff = np.asarray(eff, dtype=float).ravel()
        if len(self.level) != len(self.eff):
            raise MismatchedLevelEffect(f"{name}: Levels should be consistent with effects!")

    def __len__(self):
        return len(self.level)

    def to_dict(self) -> dict:
        return {"level": list(self.level), "eff": self.eff.tolist()}

    def __repr__(self):
        return f"LevelEffect({self.name!r}, levels={len(self.level)})"


class FRSpec:
    """Fixed effects, random effects and how every trait combines them.

    :param fix: name -> LevelEffect (or ``{"level": [...], "eff": [...]}``); ``False`` disables an effect
    :param rand: name -> LevelEffect of a random effect
    :param cmb_fix: trait -> ordered list of fixed effect names
    :param cmb_rand: trait -> ``{"rn": [names], "ratio": [variance ratios]}``
    """

    def __init__(self, fix: Optional[dict] = None, rand: Optional[dict] = None,
                 cmb_fix: Optional[Union[dict, list]] = None, cmb_rand: Optional[Union[dict, list]] = None):
        self.fix: Dict[str, Optional[LevelEffect]] = {
            name: self._as_level_effect(name, spec) for name, spec in (fix or {}).items()
        }
        self.rand: Dict[str, Optional[LevelEffect]] = {
            name: self._as_level_effect(name, spec) for name, spec in (rand or {}).items()
        }
        self.cmb_fix: List[List[str]] = [list(names or []) for names in self._as_list(cmb_fix)]
        self.cmb_rand: List[dict] = []
        for item in self._as_list(cmb_rand):
            item = item or {}
            rn = list(np.atleast_1d(item.get("rn", []))) if item.get("rn") is not None else []
            ratio = [float(r) for r in np.atleast_1d(item.get("ratio", []))] if item.get("ratio") is not None else []
            if len(rn) != len(ratio):
                raise InvalidDimensions(
                    "Phenotype variance ratio of random effects should be corresponding to random effects names!"
                )
            self.cmb_rand.append({"rn": [str(n) for n in rn], "ratio": ratio})
        for names in self.cmb_fix:
            unknown = [n for n in names if n not in self.fix]
            if unknown:
                raise ValueError(f"Fixed effects {unknown} are combined but not defined")
        for item in self.cmb_rand:
            unknown = [n for n in item["rn"] if n not in self.rand]
            if unknown:
                raise ValueError(f"Random effects {unknown} are combined but not defined")

    @staticmethod
    def _as_level_effect(name: str, spec) -> Optional[LevelEffect]:
        if spec is False or spec is None:
            return None
        if isinstance(spec, LevelEffect):
            spec.name = spec.name or name
            return spec
        return LevelEffect(spec["level"], spec["eff"], name=name)

    @staticmethod
    def _as_list(cmb) -> list:
        if cmb is None:
            return []
        if isinstance(cmb, dict):
            return list(cmb.values())
        return list(cmb)

    def fix_names(self, i: int) -> List[str]:
        return self.cmb_fix[i] if i < len(self.cmb_fix) else []

    def rand_names(self, i: int) -> Tuple[List[str], List[float]]:
        if i < len(self.cmb_rand):
            return self.cmb_rand[i]["rn"], self.cmb_rand[i]["ratio"]
        return [], []

    def combined_fix(self) -> set:
        return {n for names in self.cmb_fix for n in names}

    def combined_rand(self) -> set:
        return {n for item in self.cmb_rand for n in item["rn"]}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["FRSpec"]:
        if not data:
            return None
        return cls(
            fix=data.get("fix"),
            rand=data.get("rand"),
            cmb_fix=data.get("cmb_fix"),
            cmb_rand=data.get("cmb_rand"),
        )


# ------------------------
# Result
# ------------------------

class PhenotypeResult:
    """Output of one phenotype simulation.

    :param info_tr: variance and heritability summary
    :param info_eff: decomposition table (a dict of tables keyed by trait in multi-trait mode)
    :param info_pheno: TBV, TGV and phenotype of every individual (plus EBVs when requested)
    :param pop: population table with the selection criterion columns set
    :param effs: the (re-calibrated) architecture
    :param info_ebv: raw response of the genomic evaluator
    :param fr: {"fix": DataFrame, "rand": DataFrame} of every trait, or None without fixed and random effects
    """

    def __init__(self, info_tr: dict, info_eff, info_pheno: pd.DataFrame,
                 pop: Optional[pd.DataFrame] = None, effs: Optional[Architecture] = None,
                 info_ebv: Optional[pd.DataFrame] = None, fr: Optional[List[dict]] = None):
        self.info_tr = info_tr
        self.info_eff = info_eff
        self.info_pheno = info_pheno
        self.pop = pop
        self.effs = effs
        self.info_ebv = info_ebv
        self.fr = fr

    @property
    def multrait(self) -> bool:
        return isinstance(self.info_eff, dict)

    @property
    def traits(self) -> List[str]:
        if self.multrait:
            return list(self.info_eff.keys())
        return ["tr1"]

    def pheno_column(self, i: int) -> str:
        return f"pheno_{self.traits[i]}" if self.multrait else "pheno"

    def eff_table(self, i: int) -> pd.DataFrame:
        return self.info_eff[self.traits[i]] if self.multrait else self.info_eff

    def set_eff_table(self, i: int, table: pd.DataFrame) -> None:
        if self.multrait:
            self.info_eff[self.traits[i]] = table
        else:
            self.info_eff = table


def trait_names(n: int) -> List[str]:
    return [f"tr{i + 1}" for i in range(n)]


# ------------------------
# Configuration
# ------------------------

def load_config(path: str) -> dict:
    """
    Load a simulation configuration from a JSON file.

    Recognised sections: ``effs`` (effect sampling), ``pheno`` (heritability,
    variance and selection settings), ``fr`` (fixed / random effects) and
    ``cv`` (coefficient of variation). ``fr`` is returned as an FRSpec.

    :param path: Path to JSON configuration file
    """
    if not os.path.isfile(path):
        raise ValueError(f"Config not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse config: {path} ({e})")
    unknown = set(raw) - {"effs", "pheno", "fr", "cv"}
    if unknown:
        raise ValueError(f"Unknown config sections: {sorted(unknown)}")
    return {
        "effs": raw.get("effs") or {},
        "pheno": raw.get("pheno") or {},
        "fr": FRSpec.from_dict(raw.get("fr")),
        "cv": raw.get("cv"),
    }
