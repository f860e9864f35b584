"""Domain models representing normalized markets and alert candidates."""

from .models import AlertCandidate, AlertKind, NormalizedMarket

__all__ = [
    "AlertCandidate",
    "AlertKind",
    "NormalizedMarket",
]
