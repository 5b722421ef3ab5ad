import pytest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from prcontext.budget.token_budget import (
    BudgetAllocator,
    CharRatioEstimator,
    TokenLimits,
    estimate_tokens,
    truncate_to_token_budget,
)


ESTIMATOR = CharRatioEstimator(4)


def lines_of(count: int, width: int = 100) -> str:
    """``count`` lines of exactly ``width`` characters including the newline."""
    return ("x" * (width - 1) + "\n") * count


class TestTokenEstimation:
    """Test the character-ratio token estimate."""

    def test_rounds_up(self):
        assert ESTIMATOR.estimate("x" * 10) == 3
        assert ESTIMATOR.estimate("x" * 8) == 2
        assert ESTIMATOR.estimate("") == 0

    def test_module_helper(self):
        assert estimate_tokens("abcd", ESTIMATOR) == 1

    def test_invalid_ratio(self):
        with pytest.raises(ValueError):
            CharRatioEstimator(0)


class TestTruncation:
    """Test truncation with line back-off and marker."""

    def test_text_within_budget_unchanged(self):
        text = "short text"
        assert truncate_to_token_budget(text, 100, "diff", ESTIMATOR) == text

    def test_backs_off_to_line_break(self):
        text = lines_of(600)

        result = truncate_to_token_budget(text, 12000, "context", ESTIMATOR)

        kept, marker = result.split("\n\n... [", 1)
        assert len(kept) == 47999
        assert kept.endswith("x")
        assert marker == "context truncated: 3000 tokens removed]"

    def test_hard_cut_without_late_newline(self):
        text = "a" * 100

        result = truncate_to_token_budget(text, 10, "diff", ESTIMATOR)

        assert result == "a" * 40 + "\n\n... [diff truncated: 15 tokens removed]"

    def test_early_newline_is_ignored(self):
        text = "ab\n" + "c" * 97

        result = truncate_to_token_budget(text, 10, "diff", ESTIMATOR)

        assert result.startswith("ab\n" + "c" * 37 + "\n\n... [")

    def test_zero_budget_leaves_marker_only(self):
        result = truncate_to_token_budget("y" * 40, 0, "context", ESTIMATOR)

        assert result == "\n\n... [context truncated: 10 tokens removed]"


class TestTokenLimits:
    """Test limit validation."""

    def test_defaults(self):
        limits = TokenLimits()
        assert limits.available_input == 15500

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            TokenLimits(max_context_tokens=-1)

    def test_preamble_must_fit(self):
        with pytest.raises(ValueError):
            TokenLimits(max_total_tokens=500, preamble_tokens=500)


class TestBudgetAllocator:
    """Test allocation between the change text and retrieval context."""

    def setup_method(self):
        self.allocator = BudgetAllocator(TokenLimits(), ESTIMATOR)

    def test_small_diff_large_context(self):
        diff = "d" * 5000
        context = lines_of(600)

        result = self.allocator.allocate(diff, context)

        assert result.truncated_change == diff
        assert result.allocation.original_change_tokens == 1250
        assert result.allocation.original_context_tokens == 15000
        assert result.allocation.allocated_change == 1250
        assert result.allocation.allocated_context == 12000
        assert result.allocation.total_input == 13750
        assert result.truncated_context.endswith("[context truncated: 3000 tokens removed]")

    def test_oversized_diff_capped(self):
        result = self.allocator.allocate("d" * 20000, lines_of(600))

        assert result.allocation.allocated_change == 4000
        assert result.allocation.allocated_context == 11500
        assert "[diff truncated: 1000 tokens removed]" in result.truncated_change

    def test_everything_fits(self):
        result = self.allocator.allocate("diff text", "context text")

        assert result.truncated_change == "diff text"
        assert result.truncated_context == "context text"

    def test_tight_total_starves_context(self):
        allocator = BudgetAllocator(TokenLimits(max_total_tokens=1000, preamble_tokens=500), ESTIMATOR)

        allocation = allocator.allocate_tokens(1250, 15000)

        assert allocation.allocated_change == 500
        assert allocation.allocated_context == 0

    @pytest.mark.parametrize("change_tokens,context_tokens", [
        (0, 0), (1, 50000), (4000, 12000), (100000, 100000), (15500, 0),
    ])
    def test_total_never_exceeds_limit(self, change_tokens, context_tokens):
        limits = TokenLimits()
        allocation = BudgetAllocator(limits, ESTIMATOR).allocate_tokens(change_tokens, context_tokens)

        assert allocation.total_input <= limits.max_total_tokens
        assert allocation.allocated_change <= limits.max_change_tokens
        assert allocation.allocated_context <= limits.max_context_tokens

    def test_none_rejected(self):
        with pytest.raises(ValueError):
            self.allocator.allocate(None, "")
        with pytest.raises(ValueError):
            self.allocator.allocate("", None)
