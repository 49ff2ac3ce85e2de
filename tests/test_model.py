import json

import numpy as np
import pytest

from phenosim.effs import cal_effs
from phenosim.errors import InvalidDimensions, UnevenQTNCount
from phenosim.model import (
    ADEffects,
    Architecture,
    FRSpec,
    TraitArchitecture,
    effects_for_model,
    load_config,
)


def test_architecture_json(tmp_path, geno, rng):
    effs = cal_effs(geno, cal_model="ADI", rng=rng)
    path = effs.save(str(tmp_path / "effs.json"))
    loaded = Architecture.load(path)
    assert loaded.model == "ADI"
    np.testing.assert_array_equal(loaded[0].markers, effs[0].markers)
    np.testing.assert_allclose(loaded[0].effects.dd, effs[0].effects.dd)


def test_effect_vectors_keep_length():
    eff = ADEffects(a=[0.1, 0.2], d=[0.0, 0.1])
    with pytest.raises(InvalidDimensions):
        eff.set("a", [1.0])
    with pytest.raises(KeyError):
        eff.get("aa")


def test_interactions_need_even_qtn():
    eff = effects_for_model("ADI", a=[1, 2, 3], d=[1, 2, 3], aa=[1], ad=[1], da=[1], dd=[1])
    with pytest.raises(UnevenQTNCount):
        TraitArchitecture([0, 1, 2], eff)


def test_multi_trait_only_additive():
    trait = TraitArchitecture([0, 1], ADEffects(a=[0.1, 0.2], d=[0.0, 0.1]))
    with pytest.raises(ValueError):
        Architecture([trait, trait.copy()], multrait=True)


def test_update_copies_effects(geno, rng):
    effs = cal_effs(geno, rng=rng)
    other = effs.copy()
    other[0].effects.set("a", other[0].effects.a * 2)
    effs.update(other)
    np.testing.assert_allclose(effs[0].effects.a, other[0].effects.a)
    assert effs[0].effects is not other[0].effects


def test_fr_spec_unknown_effect():
    with pytest.raises(ValueError):
        FRSpec(fix={"sex": {"level": [1, 2], "eff": [0, 1]}}, cmb_fix={"tr1": ["herd"]})


def test_load_config(tmp_path):
    cfg = {
        "effs": {"cal_model": "AD", "num_qtn": [4, 6]},
        "pheno": {"h2_tr1": [0.3, 0.1], "sel_on": False},
        "fr": {"fix": {"sex": {"level": [1, 2], "eff": [0.5, -0.5]}}, "cmb_fix": {"tr1": ["sex"]}},
        "cv": {"fam": [0.2]},
    }
    path = tmp_path / "sim.json"
    path.write_text(json.dumps(cfg))
    loaded = load_config(str(path))
    assert loaded["effs"]["cal_model"] == "AD"
    assert isinstance(loaded["fr"], FRSpec)
    assert loaded["fr"].fix_names(0) == ["sex"]
    assert loaded["cv"] == {"fam": [0.2]}


def test_load_config_unknown_section(tmp_path):
    path = tmp_path / "sim.json"
    path.write_text(json.dumps({"gwas": {}}))
    with pytest.raises(ValueError):
        load_config(str(path))
