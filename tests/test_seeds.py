"""Tests for default rule seeding."""

from reconciler.matching import DEFAULT_RULES, match_rule, seed_default_rules
from reconciler.models import Category, MatchMode, TransactionType


def test_rules_only_for_existing_categories(org_id, taxonomy):
    """Of the fixture taxonomy only Supermercado has default keywords."""
    rules = seed_default_rules(org_id, taxonomy.categories)

    assert {r.category_id for r in rules} == {taxonomy.supermercado.id}
    assert "carrefour" in {r.description for r in rules}
    assert all(r.match_mode == MatchMode.CONTAINS for r in rules)
    assert all(r.transaction_type == TransactionType.EXPENSE for r in rules)


def test_category_names_compared_without_accents(org_id):
    category = Category(organization_id=org_id, name="REFEICOES FORA", type=TransactionType.EXPENSE)

    rules = seed_default_rules(org_id, [category])

    assert "ifood" in {r.description for r in rules}


def test_two_letter_keywords_skipped(org_id):
    category = Category(organization_id=org_id, name="Contas da casa")

    descriptions = {r.description for r in seed_default_rules(org_id, [category])}

    assert "oi" not in descriptions
    assert "tim" in descriptions


def test_seeded_keyword_matches_accented_description(org_id, make_transaction):
    """Unaccented keywords still hit the accented text banks send."""
    category = Category(organization_id=org_id, name="Condomínio / IPTU")
    rules = seed_default_rules(org_id, [category])

    rule = match_rule(make_transaction(description="CONDOMÍNIO EDIFÍCIO SOL"), rules)

    assert rule is not None
    assert rule.description == "condominio"
    assert rule.category_id == category.id


def test_income_categories_never_seeded(org_id):
    category = Category(organization_id=org_id, name="Supermercado", type=TransactionType.INCOME)
    assert seed_default_rules(org_id, [category]) == []


def test_existing_keywords_skipped(org_id, taxonomy, make_rule):
    existing = make_rule("Carrefour", taxonomy.lazer.id)

    rules = seed_default_rules(org_id, taxonomy.categories, [existing])

    expected = len(dict(DEFAULT_RULES)["Supermercado"]) - 1
    assert len(rules) == expected
    assert "carrefour" not in {r.description for r in rules}


def test_service_seeding_is_idempotent(run, build_service, org_id):
    service, stores = build_service()

    first = run(service.seed_rules(org_id))
    second = run(service.seed_rules(org_id))

    assert len(first) > 0
    assert second == []
    assert len(run(stores.rules.list_rules(org_id))) == len(first)


def test_seeded_rule_classifies(run, build_service, org_id, taxonomy):
    from decimal import Decimal

    service, _ = build_service()
    run(service.seed_rules(org_id))

    result = run(service.classify_transaction(
        "COMPRA CARTAO CARREFOUR SP", Decimal("230.10"), TransactionType.EXPENSE,
        organization_id=org_id,
    ))

    assert result.category_id == taxonomy.supermercado.id
    assert result.auto_validated is True
