"""Shared fixtures for the phenosim tests."""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def rng():
    """Deterministic numpy generator."""
    return np.random.default_rng(42)


@pytest.fixture
def geno(rng):
    """500 markers x 100 individuals dosage matrix."""
    return rng.integers(0, 3, size=(500, 100)).astype(float)


@pytest.fixture
def pop():
    """Population table of 100 individuals in 10 full-sib families."""
    nind = 100
    return pd.DataFrame({
        "index": np.arange(1, nind + 1),
        "gen": 1,
        "fam": np.repeat(np.arange(1, 11), 10),
        "infam": np.tile(np.arange(1, 11), 10),
        "sir": 0,
        "dam": 0,
        "sex": np.tile([1, 2], nind // 2),
    })


def scaled_column(rng, n, var):
    """Centered normal draw with sample variance exactly ``var``."""
    x = rng.standard_normal(n)
    x = (x - x.mean()) / x.std(ddof=1)
    return x * np.sqrt(var)


@pytest.fixture
def scaled(rng):
    """Factory of columns with an exact sample variance."""
    return lambda n, var: scaled_column(rng, n, var)
