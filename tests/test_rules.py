"""Tests for the reconciliation rule matcher."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from reconciler.matching import RuleMatcher, match_rule
from reconciler.models import (
    ClassificationRequest,
    ClassificationSource,
    MatchMode,
    TransactionType,
)
from reconciler.services.storage import InMemoryRuleStorage, InMemoryTaxonomyStorage


class TestMatchRule:
    """Tests for match_rule()."""

    def test_exact_is_case_insensitive(self, make_transaction, make_rule, taxonomy):
        """Exact mode ignores case."""
        rule = make_rule("netflix", taxonomy.lazer.id, match_mode=MatchMode.EXACT)
        tx = make_transaction(description="NETFLIX")
        assert match_rule(tx, [rule]) == rule

    def test_exact_rejects_partial(self, make_transaction, make_rule, taxonomy):
        """"NETFLIX" does not exactly match "NETFLIX PREMIUM"."""
        rule = make_rule("NETFLIX", taxonomy.lazer.id, match_mode=MatchMode.EXACT)
        tx = make_transaction(description="NETFLIX PREMIUM")
        assert match_rule(tx, [rule]) is None

    def test_contains_is_case_insensitive_substring(self, make_transaction, make_rule, taxonomy):
        """Contains mode finds the rule text anywhere."""
        rule = make_rule("Netflix", taxonomy.lazer.id)
        tx = make_transaction(description="PAGTO NETFLIX PREMIUM 123")
        assert match_rule(tx, [rule]) == rule

    def test_accents_ignored_on_both_sides(self, make_transaction, make_rule, taxonomy):
        rule = make_rule("farmácia", taxonomy.lazer.id)
        assert match_rule(make_transaction(description="DROGA RAIA FARMACIA"), [rule]) == rule

        exact = make_rule("AGUA", taxonomy.lazer.id, match_mode=MatchMode.EXACT)
        assert match_rule(make_transaction(description="Água"), [exact]) == exact

    def test_amount_must_match(self, make_transaction, make_rule, taxonomy):
        """An amount-qualified rule rejects other amounts."""
        rule = make_rule("NETFLIX", taxonomy.lazer.id, amount=Decimal("39.90"))
        tx = make_transaction(amount="55.90")
        assert match_rule(tx, [rule]) is None

    def test_amount_compares_absolute_values(self, make_transaction, make_rule, taxonomy):
        """Signed rule amounts still match the unsigned transaction amount."""
        rule = make_rule("NETFLIX", taxonomy.lazer.id, amount=Decimal("-55.9"))
        tx = make_transaction(amount="55.90")
        assert match_rule(tx, [rule]) == rule

    def test_type_must_match(self, make_transaction, make_rule, taxonomy):
        """Income rules never classify expenses."""
        rule = make_rule("NETFLIX", taxonomy.lazer.id, transaction_type=TransactionType.INCOME)
        assert match_rule(make_transaction(), [rule]) is None

    def test_inactive_rules_ignored(self, make_transaction, make_rule, taxonomy):
        rule = make_rule("NETFLIX", taxonomy.lazer.id, is_active=False)
        assert match_rule(make_transaction(), [rule]) is None

    def test_rule_without_category_ignored(self, make_transaction, make_rule):
        """A rule with nothing to assign can't classify."""
        rule = make_rule("NETFLIX", None)
        assert match_rule(make_transaction(), [rule]) is None

    def test_empty_description_never_matches(self, make_transaction, make_rule, taxonomy):
        rule = make_rule("NETFLIX", taxonomy.lazer.id)
        assert match_rule(make_transaction(description=None), [rule]) is None

    def test_exact_beats_contains(self, make_transaction, make_rule, taxonomy):
        """The more specific mode wins regardless of order."""
        contains = make_rule("netflix", taxonomy.supermercado.id)
        exact = make_rule("netflix premium", taxonomy.lazer.id, match_mode=MatchMode.EXACT)
        tx = make_transaction(description="NETFLIX PREMIUM")
        assert match_rule(tx, [contains, exact]) == exact

    def test_amount_qualified_beats_amountless(self, make_transaction, make_rule, taxonomy):
        plain = make_rule("netflix", taxonomy.supermercado.id)
        priced = make_rule("netflix", taxonomy.lazer.id, amount=Decimal("55.90"))
        assert match_rule(make_transaction(), [plain, priced]) == priced

    def test_earliest_created_wins_tie(self, make_transaction, make_rule, taxonomy):
        now = datetime.now(timezone.utc)
        newer = make_rule("netflix", taxonomy.supermercado.id, created_at=now)
        older = make_rule("netflix", taxonomy.lazer.id, created_at=now - timedelta(days=1))
        assert match_rule(make_transaction(), [newer, older]) == older


class TestRuleMatcher:
    """Tests for RuleMatcher.attempt()."""

    def test_hit_has_full_confidence_and_names(self, run, org_id, make_rule, taxonomy):
        """A rule hit carries confidence 1.0 and resolved names."""
        rule = make_rule("NETFLIX", taxonomy.lazer.id, cost_center_id=taxonomy.casa.id)
        matcher = RuleMatcher(
            InMemoryRuleStorage([rule]),
            InMemoryTaxonomyStorage(taxonomy.categories, taxonomy.cost_centers),
        )
        request = ClassificationRequest(
            description="PAGTO NETFLIX PREMIUM 123",
            amount=Decimal("55.90"),
            type=TransactionType.EXPENSE,
            organization_id=org_id,
        )

        result = run(matcher.attempt(request))

        assert result.source == ClassificationSource.RULE
        assert result.confidence == 1.0
        assert result.category_name == "Lazer"
        assert result.cost_center_name == "Casa"

    def test_no_organization_no_rules(self, run, make_rule, taxonomy):
        """Rules are tenant-scoped; without an organization they're skipped."""
        rule = make_rule("NETFLIX", taxonomy.lazer.id)
        matcher = RuleMatcher(InMemoryRuleStorage([rule]), InMemoryTaxonomyStorage())
        request = ClassificationRequest(description="NETFLIX", type=TransactionType.EXPENSE)

        assert run(matcher.attempt(request)) is None

    def test_other_organization_rules_not_used(self, run, make_rule, taxonomy):
        from uuid import uuid4

        rule = make_rule("NETFLIX", taxonomy.lazer.id)
        matcher = RuleMatcher(InMemoryRuleStorage([rule]), InMemoryTaxonomyStorage())
        request = ClassificationRequest(
            description="NETFLIX",
            type=TransactionType.EXPENSE,
            organization_id=uuid4(),
        )

        assert run(matcher.attempt(request)) is None
