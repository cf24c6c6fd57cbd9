# ============================================================
# Biometric Template Adapter - Core Matching Module
# ============================================================

from core.matching.search import SearchResult, search
from core.matching.verification import REJECTION_SCORE, verify

__all__ = [
    "REJECTION_SCORE",
    "SearchResult",
    "search",
    "verify",
]
