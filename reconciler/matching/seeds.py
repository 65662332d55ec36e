"""
Default Reconciliation Rules

A new organization starts with a set of "contains" rules for common
Brazilian merchants and bills. Each keyword maps to a category by name;
keywords whose category the organization doesn't have are skipped.
"""

from typing import Iterable, Optional
from uuid import UUID

from reconciler.matching.normalizer import fold
from reconciler.models.transaction import (
    Category,
    MatchMode,
    ReconciliationRule,
    TransactionType,
)

# (category name, keywords), all expense rules
DEFAULT_RULES: list[tuple[str, list[str]]] = [
    ("Supermercado", [
        "carrefour", "extra", "assai", "atacadao", "big", "pao de acucar",
        "supermercado", "mercado", "hortifruti",
    ]),
    ("Refeições fora", [
        "ifood", "uber eats", "rappi", "restaurante", "lanchonete", "pizza",
        "hamburguer", "bar", "cafe", "padaria",
    ]),
    ("Combustível", [
        "posto", "ipiranga", "shell", "petrobras", "ale", "gasolina",
        "etanol", "diesel",
    ]),
    ("Transporte público / Apps", [
        "uber", "99", "cabify", "indrive", "metro", "metro sp", "cptm", "onibus",
    ]),
    ("Aluguel / Financiamento", [
        "aluguel", "locacao", "financiamento", "habitacional", "caixa habitacao",
    ]),
    ("Contas da casa", [
        "enel", "cpfl", "energisa", "luz", "energia", "sabesp", "copasa",
        "sanepar", "agua", "gas",
        "vivo", "claro", "tim", "oi", "internet", "banda larga", "telefone",
        "telefonia",
    ]),
    ("Condomínio / IPTU", ["condominio", "iptu", "prefeitura"]),
    ("Plano de saúde", [
        "unimed", "amil", "bradesco saude", "sulamerica", "hapvida",
        "plano de saude",
    ]),
    ("Medicamentos / Consultas", [
        "farmacia", "drogasil", "droga raia", "pague menos", "consulta",
        "clinica", "hospital", "laboratorio",
    ]),
    ("Cursos / Mensalidades", [
        "curso", "faculdade", "universidade", "mensalidade", "udemy", "alura",
        "hotmart", "coursera",
    ]),
    ("Vestuário", ["renner", "riachuelo", "cea", "zara", "roupa", "vestuario"]),
    ("Lazer / Assinaturas", [
        "netflix", "spotify", "amazon prime", "prime video", "hbo", "disney",
        "cinema", "teatro",
    ]),
    ("Juros / Tarifas", ["juros", "tarifa", "anuidade", "encargos", "mora"]),
    ("Imposto de renda", ["irrf", "imposto de renda", "receita federal"]),
    ("Taxas", ["taxa", "emolumento", "registro"]),
    ("Doações", ["doacao", "ong", "instituto"]),
]

# Two-character keywords ("oi", "99") hit far too many descriptions as substrings
MIN_KEYWORD_LENGTH = 3


def seed_default_rules(
    organization_id: UUID,
    categories: Iterable[Category],
    existing_rules: Optional[Iterable[ReconciliationRule]] = None,
) -> list[ReconciliationRule]:
    """
    Build the default rules for an organization.

    Args:
        organization_id: Owner of the new rules
        categories: The organization's taxonomy
        existing_rules: Rules already stored; their keywords are skipped

    Returns:
        New, unsaved rules
    """
    by_name = {
        fold(category.name): category
        for category in categories
        if category.type in (None, TransactionType.EXPENSE)
    }
    taken = {
        (fold(rule.description), rule.transaction_type)
        for rule in existing_rules or []
    }

    rules = []
    for category_name, keywords in DEFAULT_RULES:
        category = by_name.get(fold(category_name))
        if category is None:
            continue
        for keyword in keywords:
            if len(keyword) < MIN_KEYWORD_LENGTH:
                continue
            if (keyword, TransactionType.EXPENSE) in taken:
                continue
            taken.add((keyword, TransactionType.EXPENSE))
            rules.append(ReconciliationRule(
                organization_id=organization_id,
                description=keyword,
                match_mode=MatchMode.CONTAINS,
                category_id=category.id,
                transaction_type=TransactionType.EXPENSE,
            ))
    return rules
