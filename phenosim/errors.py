"""Exceptions raised by phenosim.

Validation problems are ``ValueError`` subclasses and are raised before any
numeric work starts. Failures that happen while computing (or inside the
external evaluator) are ``RuntimeError`` subclasses.
"""


class PhenosimError(Exception):
    """Base class of every phenosim error."""


class InvalidDimensions(PhenosimError, ValueError):
    pass


class HeritabilityOutOfRange(PhenosimError, ValueError):
    pass


class UnevenQTNCount(PhenosimError, ValueError):
    pass


class NonSymmetricCovariance(PhenosimError, ValueError):
    pass


class InsufficientRandomLevels(PhenosimError, ValueError):
    pass


class MismatchedLevelEffect(PhenosimError, ValueError):
    pass


class InconsistentCVSpec(PhenosimError, ValueError):
    pass


class NegativeResidualVariance(PhenosimError, RuntimeError):
    pass


class ExternalEvaluationFailure(PhenosimError, RuntimeError):
    """Genomic evaluation failed.

    When raised by ``phenotype``, ``result`` holds the finished phenotype
    result with the population table set on the ``pheno`` criterion and
    ``result.effs`` the re-calibrated architecture, which the caller's
    architecture has not taken over.
    """

    result = None
