"""Summary: Reply-needed classification for ingested messages.

Importance: Decides which messages are offered for drafting and used as history.
Alternatives: Use an LLM-based classifier for higher accuracy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from replydesk.models import Message


class ReplyClassifier(ABC):
    """Summary: Predicate deciding whether a message requires a reply.

    Importance: Keeps the policy pluggable instead of hardcoded in the normalizer.
    Alternatives: Store a fixed flag during ingestion.
    """

    @abstractmethod
    def requires_reply(self, message: Message) -> bool:
        """Summary: Return True when the message should get a draft."""


@dataclass(frozen=True)
class AlwaysReplyClassifier(ReplyClassifier):
    """Summary: Marks every message that survived the category filter.

    Importance: Matches current behavior, where the provider query already drops
    promotions, social, updates, forums, and spam.
    Alternatives: Check for questions or known contacts.
    """

    def requires_reply(self, message: Message) -> bool:
        return True
