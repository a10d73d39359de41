# src/dealeval/domain/errors.py
from __future__ import annotations


class DealEvaluatorError(Exception):
    """Base class for every error raised by the evaluator core."""


class ConfigurationError(DealEvaluatorError):
    pass


class NoMarketDataError(DealEvaluatorError):
    """No listings of the subject's type exist for the zip code."""


class InsufficientComparablesError(DealEvaluatorError):
    """
    Listings exist but fewer than 3 pass any tolerance tier.

    `best_count` is the largest match count seen while widening.
    """

    def __init__(self, message: str, best_count: int) -> None:
        super().__init__(message)
        self.best_count = best_count


class InvalidInputError(DealEvaluatorError, ValueError):
    pass


class NotFoundError(DealEvaluatorError, LookupError):
    pass


class ProviderUnavailableError(DealEvaluatorError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
