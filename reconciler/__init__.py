"""
Reconciler - Transaction Classification Engine

Assigns categories, cost centers and validation status to imported
bank transactions, and learns from human corrections.

DESIGN PRINCIPLES:
1. Rules → Patterns → AI, in that order of trust
2. AI suggests, it never auto-validates
3. Learning is best-effort and never blocks validation
4. Every classification is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Reconciler Team"
