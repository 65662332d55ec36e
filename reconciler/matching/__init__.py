"""Rule and pattern matching package."""

from reconciler.matching.base import ClassificationMatcher
from reconciler.matching.normalizer import normalize, word_similarity
from reconciler.matching.patterns import (
    PatternLearner,
    PatternMatcher,
    match_pattern,
    pattern_confidence,
)
from reconciler.matching.rules import RuleMatcher, match_rule, resolve_names
from reconciler.matching.seeds import DEFAULT_RULES, seed_default_rules

__all__ = [
    "ClassificationMatcher",
    "DEFAULT_RULES",
    "PatternLearner",
    "PatternMatcher",
    "RuleMatcher",
    "match_pattern",
    "match_rule",
    "normalize",
    "pattern_confidence",
    "resolve_names",
    "seed_default_rules",
    "word_similarity",
]
