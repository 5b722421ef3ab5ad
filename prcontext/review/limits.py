"""
PR size limits and diff statistics.

Large pull requests are not worth sending to the reviewer model: they blow
the token budget long before truncation produces anything useful. The
statistics here come from the unified diff text alone.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, Any, List, Optional
import re

from ..config import settings
from ..utils.logger import app_logger


logger = app_logger.bind(component="review_limits")

_DIFF_GIT_RE = re.compile(r"^diff --git a/(.+?) b/(.+)$")
_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@ ?(.*)$")
_SYMBOL_RE = re.compile(r"(?:def|class|function|func|fn)\s+([A-Za-z_$][\w$]*)|([A-Za-z_$][\w$]*)\s*\(")

SKIPPED_EXTENSIONS = (".md", ".txt", ".json", ".yml", ".yaml")


@dataclass
class DiffFile:
    """Per-file change counts from a unified diff."""
    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    hunk_headers: List[str] = field(default_factory=list)


@dataclass
class DiffStats:
    files: List[DiffFile] = field(default_factory=list)

    @property
    def additions(self) -> int:
        return sum(f.additions for f in self.files)

    @property
    def deletions(self) -> int:
        return sum(f.deletions for f in self.files)

    @property
    def total_changes(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class PRLimits:
    max_files: int = 50
    max_additions: int = 2000
    max_deletions: int = 1500
    max_total_changes: int = 3000

    @classmethod
    def from_settings(cls) -> "PRLimits":
        return cls(
            max_files=settings.pr_max_files,
            max_additions=settings.pr_max_additions,
            max_deletions=settings.pr_max_deletions,
            max_total_changes=settings.pr_max_total_changes,
        )

    def scaled(self, factor: int) -> "PRLimits":
        return replace(
            self,
            max_files=self.max_files * factor,
            max_additions=self.max_additions * factor,
            max_deletions=self.max_deletions * factor,
            max_total_changes=self.max_total_changes * factor,
        )


@dataclass
class LimitCheckResult:
    passed: bool
    details: Dict[str, int]
    limits: PRLimits
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "reason": self.reason,
            "details": dict(self.details),
            "limits": {
                "max_files": self.limits.max_files,
                "max_additions": self.limits.max_additions,
                "max_deletions": self.limits.max_deletions,
                "max_total_changes": self.limits.max_total_changes,
            },
        }


def parse_diff_stats(diff_text: str) -> DiffStats:
    """Count files, additions and deletions in a unified diff."""
    if diff_text is None:
        raise ValueError("diff_text must not be None")

    stats = DiffStats()
    current: Optional[DiffFile] = None
    # lines still expected in the current hunk (old side, new side)
    old_left = new_left = 0

    for line in diff_text.splitlines():
        if old_left > 0 or new_left > 0:
            if line.startswith("+"):
                current.additions += 1
                new_left -= 1
            elif line.startswith("-"):
                current.deletions += 1
                old_left -= 1
            elif not line.startswith("\\"):
                old_left -= 1
                new_left -= 1
            continue

        match = _DIFF_GIT_RE.match(line)
        if match:
            current = DiffFile(filename=match.group(2))
            stats.files.append(current)
            continue

        if line.startswith("--- "):
            # plain ``diff -u`` output has no ``diff --git`` line
            if current is None or current.additions or current.deletions or current.hunk_headers:
                current = DiffFile(filename="")
                stats.files.append(current)
            if line[4:].strip() == "/dev/null":
                current.status = "added"
            continue

        if line.startswith("+++ ") and current is not None:
            path = line[4:].split("\t")[0].strip()
            if path == "/dev/null":
                current.status = "removed"
            elif not current.filename:
                current.filename = path[2:] if path.startswith("b/") else path
            continue

        hunk = _HUNK_RE.match(line)
        if hunk and current is not None:
            old_left = int(hunk.group(2)) if hunk.group(2) is not None else 1
            new_left = int(hunk.group(4)) if hunk.group(4) is not None else 1
            if hunk.group(5):
                current.hunk_headers.append(hunk.group(5).strip())

    return stats


def check_pr_limits(stats: DiffStats, limits: Optional[PRLimits] = None) -> LimitCheckResult:
    """Check if a change set is within acceptable size limits."""
    limits = limits or PRLimits.from_settings()
    details = {
        "files": len(stats.files),
        "additions": stats.additions,
        "deletions": stats.deletions,
        "total_changes": stats.total_changes,
    }

    violations = []
    if details["files"] > limits.max_files:
        violations.append(f"Too many files: {details['files']}/{limits.max_files}")
    if details["additions"] > limits.max_additions:
        violations.append(f"Too many additions: {details['additions']}/{limits.max_additions}")
    if details["deletions"] > limits.max_deletions:
        violations.append(f"Too many deletions: {details['deletions']}/{limits.max_deletions}")
    if details["total_changes"] > limits.max_total_changes:
        violations.append(f"Too many total changes: {details['total_changes']}/{limits.max_total_changes}")

    passed = not violations
    if not passed:
        logger.warning(f"PR exceeds size limits: {'; '.join(violations)}")

    return LimitCheckResult(
        passed=passed,
        details=details,
        limits=limits,
        reason=None if passed else "; ".join(violations),
    )


def should_skip_review(stats: DiffStats, limits: Optional[PRLimits] = None) -> bool:
    """True for change sets beyond twice the normal limits."""
    base = limits or PRLimits.from_settings()
    return not check_pr_limits(stats, base.scaled(2)).passed


def oversized_pr_message(result: LimitCheckResult) -> str:
    """Markdown notice posted instead of a review for oversized PRs."""
    details, limits = result.details, result.limits
    return f"""## PR Too Large for Detailed Review

This pull request exceeds the recommended size limits for automated review:

| Metric | Current | Limit |
|--------|---------|-------|
| Files changed | {details['files']} | {limits.max_files} |
| Additions | {details['additions']} | {limits.max_additions} |
| Deletions | {details['deletions']} | {limits.max_deletions} |
| Total changes | {details['total_changes']} | {limits.max_total_changes} |

### Recommendations

1. **Break into smaller PRs** - Smaller PRs are easier to review and less likely to introduce bugs
2. **Separate refactoring** - If this includes refactoring, consider splitting it out
3. **Feature flags** - Use feature flags to merge incrementally

---
*This is an automated message. The review was skipped to prevent token limit issues.*"""


def filter_significant_files(stats: DiffStats) -> DiffStats:
    """Drop files with fewer than three changed lines and doc/config files."""
    return DiffStats(files=[
        f for f in stats.files
        if f.additions + f.deletions >= 3 and not f.filename.endswith(SKIPPED_EXTENSIONS)
    ])


def query_from_diff(diff_text: str, max_terms: int = 40) -> str:
    """Retrieval query built from changed file paths and hunk-header symbols."""
    stats = parse_diff_stats(diff_text)
    terms: List[str] = []
    for diff_file in stats.files:
        if diff_file.filename:
            terms.append(diff_file.filename)
        for header in diff_file.hunk_headers:
            for keyword_name, call_name in _SYMBOL_RE.findall(header):
                terms.append(keyword_name or call_name)

    return " ".join(list(dict.fromkeys(terms))[:max_terms])
