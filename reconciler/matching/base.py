"""
Matcher Strategy Interface

The trust hierarchy of the engine is an ordered list of matchers:

    [RuleMatcher, PatternMatcher, AIMatcher]

The orchestrator walks the list and stops at the first matcher that
returns a result. Adding a source means adding a class here, not another
branch in the orchestrator.
"""

from abc import ABC, abstractmethod
from typing import Optional

from reconciler.models.transaction import (
    ClassificationRequest,
    ClassificationResult,
    ClassificationSource,
)


class ClassificationMatcher(ABC):
    """One classification source."""

    source: ClassificationSource = ClassificationSource.NONE

    @abstractmethod
    async def attempt(
        self,
        request: ClassificationRequest,
    ) -> Optional[ClassificationResult]:
        """
        Try to classify a transaction.

        Returns None when this source has nothing to say, so the next
        source in the list gets a chance.
        """
        pass
