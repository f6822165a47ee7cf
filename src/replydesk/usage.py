"""Summary: Daily usage metering against tier ceilings.

Importance: Gates free-tier message fetches and draft generation per local day.
Alternatives: Enforce quotas with atomic counters at write time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from replydesk.storage.sqlite_store import SqliteStore


MESSAGES = "messages"
DRAFTS = "drafts"


@dataclass(frozen=True)
class UsageLimits:
    """Summary: Free-tier daily ceilings; premium has none."""

    messages: int = 50
    drafts: int = 10

    def ceiling(self, kind: str) -> int:
        if kind == MESSAGES:
            return self.messages
        if kind == DRAFTS:
            return self.drafts
        raise ValueError(f"Unknown usage kind: {kind}")


@dataclass(frozen=True)
class UsageMeter:
    """Summary: Counts rows created since local midnight and compares them to the tier ceiling.

    Importance: Read-time check only; two concurrent requests can both pass
    and briefly exceed the ceiling.
    Alternatives: Reserve quota in a transaction before doing the work.
    """

    store: SqliteStore
    limits: UsageLimits = field(default_factory=UsageLimits)
    clock: Callable[[], datetime] = datetime.now

    def day_start(self) -> datetime:
        return self.clock().replace(hour=0, minute=0, second=0, microsecond=0)

    def count_today(self, user_id: int, kind: str) -> int:
        self.limits.ceiling(kind)
        return self.store.count_created_since(user_id, kind, self.day_start())

    def check_limit(self, user_id: int, kind: str, is_premium: bool) -> bool:
        """Summary: Return True while the user may still perform the action today.

        Importance: Premium users are never limited.
        Alternatives: Soft limits with warnings instead of refusal.
        """

        if is_premium:
            return True
        return self.count_today(user_id, kind) < self.limits.ceiling(kind)

    def remaining(self, user_id: int, kind: str, is_premium: bool) -> int | None:
        """Summary: Return how many actions remain today, or None when unbounded."""

        if is_premium:
            return None
        return max(0, self.limits.ceiling(kind) - self.count_today(user_id, kind))

    def snapshot(self, user_id: int, is_premium: bool) -> dict[str, object]:
        """Summary: Summarize today's usage for dashboards.

        Importance: Mirrors the usage panel: counts, ceilings, and tier.
        Alternatives: Let clients compute limits themselves.
        """

        return {
            "tier": "premium" if is_premium else "free",
            "messages_today": self.count_today(user_id, MESSAGES),
            "drafts_today": self.count_today(user_id, DRAFTS),
            "message_limit": None if is_premium else self.limits.messages,
            "draft_limit": None if is_premium else self.limits.drafts,
        }
