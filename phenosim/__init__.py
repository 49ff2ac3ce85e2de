"""phenosim package

Core modules:
- phenosim.effs: QTN selection and effect sampling
- phenosim.gnt: Genetic values of a single trait
- phenosim.gcov: Correlated genetic values of several traits
- phenosim.fr: Fixed and random environmental effects
- phenosim.pheno: Phenotype assembly (entry point: phenotype)
- phenosim.cv: Coefficient of variation calibration
- phenosim.sel: Selection criteria and genomic evaluation requests
- phenosim.viz: Visualization utilities
- phenosim.phenosim: CLI entry point (main)
"""

__all__ = [
    "effs",
    "gnt",
    "gcov",
    "fr",
    "pheno",
    "cv",
    "sel",
    "viz",
    "phenosim",
]
