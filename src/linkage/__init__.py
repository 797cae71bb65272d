"""FieldSync record-linkage matcher.

Modules:
    models  - Match candidates, results and biometric outcomes
    oracle  - Biometric matching server client with deadline + degrade
    matcher - Biographic / biometric merge under MFA and country policy
"""

from src.linkage.matcher import RecordLinkageMatcher
from src.linkage.models import BiographicRecord, MatchResult, Provenance

__all__ = [
    "RecordLinkageMatcher",
    "BiographicRecord",
    "MatchResult",
    "Provenance",
]
