"""
Token budget management for review inputs.

Token counts here are estimates, not tokenizer output: the default
``CharRatioEstimator`` assumes four characters per token, so
``estimate("x" * 10) == 3``. Every truncation decision uses that estimate.
A different ``TokenEstimator`` can be plugged into ``BudgetAllocator``
without changing the allocation rules.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import math

from ..config import settings
from ..types import BudgetAllocation, BudgetedInputs
from ..utils.logger import app_logger


logger = app_logger.bind(component="token_budget")

LINE_BREAK_THRESHOLD = 0.8


class TokenEstimator(ABC):
    """Strategy for estimating token counts."""

    @abstractmethod
    def estimate(self, text: str) -> int:
        """Estimated token count of ``text``."""

    @abstractmethod
    def char_budget(self, tokens: int) -> int:
        """Number of characters that fit in ``tokens``."""


class CharRatioEstimator(TokenEstimator):
    """``ceil(len(text) / chars_per_token)``."""

    def __init__(self, chars_per_token: int = 4):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)

    def char_budget(self, tokens: int) -> int:
        return max(0, tokens) * self.chars_per_token


def default_estimator() -> TokenEstimator:
    return CharRatioEstimator(settings.chars_per_token)


def estimate_tokens(text: str, estimator: Optional[TokenEstimator] = None) -> int:
    """Estimate token count from text (approximation, see module docstring)."""
    return (estimator or default_estimator()).estimate(text)


def truncate_to_token_budget(text: str, max_tokens: int, label: str = "content",
                             estimator: Optional[TokenEstimator] = None) -> str:
    """Truncate ``text`` to about ``max_tokens`` estimated tokens.

    The cut backs off to the last newline when that newline lies past 80% of
    the cut point, and a marker with the number of removed tokens is
    appended. Never fails; a budget of zero leaves only the marker.
    """
    estimator = estimator or default_estimator()
    original_tokens = estimator.estimate(text)

    if original_tokens <= max_tokens:
        return text

    max_chars = estimator.char_budget(max_tokens)
    truncated = text[:max_chars]

    # Find last complete line to avoid cutting mid-line
    last_newline = truncated.rfind("\n")
    if last_newline > max_chars * LINE_BREAK_THRESHOLD:
        truncated = truncated[:last_newline]

    kept_tokens = estimator.estimate(truncated)
    logger.warning(
        f"Truncated {label} to fit token budget: {original_tokens} -> {kept_tokens} tokens (max {max_tokens})"
    )

    return f"{truncated}\n\n... [{label} truncated: {original_tokens - kept_tokens} tokens removed]"


@dataclass(frozen=True)
class TokenLimits:
    """Hard ceilings for one review request, in estimated tokens."""
    max_change_tokens: int = 4000
    max_context_tokens: int = 12000
    max_total_tokens: int = 16000
    preamble_tokens: int = 500
    max_output_tokens: int = 2000

    def __post_init__(self):
        for name in ("max_change_tokens", "max_context_tokens", "max_total_tokens",
                     "preamble_tokens", "max_output_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.preamble_tokens >= self.max_total_tokens:
            raise ValueError("preamble_tokens must be smaller than max_total_tokens")

    @property
    def available_input(self) -> int:
        return self.max_total_tokens - self.preamble_tokens

    @classmethod
    def from_settings(cls) -> "TokenLimits":
        return cls(
            max_change_tokens=settings.max_diff_tokens,
            max_context_tokens=settings.max_context_tokens,
            max_total_tokens=settings.max_total_input_tokens,
            preamble_tokens=settings.preamble_tokens,
            max_output_tokens=settings.max_output_tokens,
        )


class BudgetAllocator:
    """Splits the input budget between the change text and retrieval context.

    The change text is served first; the context gets what is left, capped
    at its own maximum. ``allocated_change + allocated_context +
    preamble_tokens <= max_total_tokens`` always holds.
    """

    def __init__(self, limits: Optional[TokenLimits] = None, estimator: Optional[TokenEstimator] = None):
        self.limits = limits or TokenLimits.from_settings()
        self.estimator = estimator or default_estimator()

    def allocate_tokens(self, change_tokens: int, context_tokens: int) -> BudgetAllocation:
        available = self.limits.available_input
        allocated_change = min(change_tokens, self.limits.max_change_tokens, available)
        allocated_context = max(0, min(context_tokens, available - allocated_change,
                                       self.limits.max_context_tokens))

        return BudgetAllocation(
            original_change_tokens=change_tokens,
            original_context_tokens=context_tokens,
            allocated_change=allocated_change,
            allocated_context=allocated_context,
            preamble_tokens=self.limits.preamble_tokens,
        )

    def allocate(self, change_text: str, context_text: str) -> BudgetedInputs:
        if change_text is None:
            raise ValueError("change_text must not be None")
        if context_text is None:
            raise ValueError("context_text must not be None")

        allocation = self.allocate_tokens(
            self.estimator.estimate(change_text),
            self.estimator.estimate(context_text),
        )

        truncated_change = truncate_to_token_budget(
            change_text, allocation.allocated_change, "diff", self.estimator
        )
        truncated_context = truncate_to_token_budget(
            context_text, allocation.allocated_context, "context", self.estimator
        )

        logger.info(
            f"Token budget allocated: diff {allocation.original_change_tokens}->{allocation.allocated_change}, "
            f"context {allocation.original_context_tokens}->{allocation.allocated_context}, "
            f"total input {allocation.total_input}"
        )

        return BudgetedInputs(
            truncated_change=truncated_change,
            truncated_context=truncated_context,
            allocation=allocation,
        )
