"""Daily digest: collaborator sources, persistence, and the aggregator."""

from mailtrack.digest.aggregator import DigestAggregator, build_action_items
from mailtrack.digest.models import ActionItem, Digest, DigestSummary, DigestSweepResult
from mailtrack.digest.sources import DigestSources, SqliteDigestSources
from mailtrack.digest.store import DigestStore

__all__ = [
    "ActionItem",
    "Digest",
    "DigestAggregator",
    "DigestSources",
    "DigestStore",
    "DigestSummary",
    "DigestSweepResult",
    "SqliteDigestSources",
    "build_action_items",
]
