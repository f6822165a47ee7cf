"""Summary: Reply generation from a target message and past replies.

Importance: Builds the deterministic prompt and turns completion output into draft text.
Alternatives: Let the completion backend see the whole mailbox.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass

from replydesk.ai import AiProvider
from replydesk.errors import GenerationFailed
from replydesk.models import HistoricalPair


logger = logging.getLogger(__name__)

TEMPERATURE = 0.7
MAX_TOKENS = 1000
MAX_HISTORY = 3

SYSTEM_INSTRUCTION = (
    "You are an AI assistant that helps write email replies in the user's style. "
    "Your responses should be professional, concise, and address all points in the original email."
)


@dataclass(frozen=True)
class ReplyRequest:
    """Summary: The fields of a message the prompt is built from.

    Importance: Decouples prompt assembly from storage records.
    Alternatives: Pass the stored message row directly.
    """

    sender: str
    subject: str
    body: str


def build_prompt(request: ReplyRequest, history: list[HistoricalPair]) -> str:
    """Summary: Assemble the user content for a reply completion.

    Importance: Same inputs always yield the same prompt.
    Alternatives: Template the prompt with a templating engine.

    The examples block is omitted entirely when there is no history; at most
    three pairs are included, in the order given.
    """

    sections = [
        "Please write a draft reply to the following email:",
        f"From: {request.sender}\nSubject: {request.subject}\nEmail Content: {request.body}",
    ]
    examples = history[:MAX_HISTORY]
    if examples:
        lines = ["Here are some examples of my previous email responses:"]
        for pair in examples:
            lines.append(
                f"Subject: {pair.subject}\nContent: {pair.body}\nMy response: {pair.reply_body}"
            )
        sections.append("\n\n".join(lines))
    sections.append(
        "Write a professional and friendly response that addresses the points in the email. "
        "Keep the tone consistent with my previous responses if provided."
    )
    return "\n\n".join(sections)


@dataclass(frozen=True)
class ReplyGenerator:
    """Summary: Generates reply text through a completion backend.

    Importance: Single place where generation parameters are fixed.
    Alternatives: Let callers tune temperature and length per request.
    """

    ai_provider: AiProvider

    def generate(self, request: ReplyRequest, history: list[HistoricalPair]) -> str:
        """Summary: Generate reply text for a message.

        Importance: Any backend error or empty output becomes GenerationFailed.
        Alternatives: Retry with backoff before failing.
        """

        prompt = build_prompt(request, history)
        try:
            text = self.ai_provider.complete(
                SYSTEM_INSTRUCTION, prompt, temperature=TEMPERATURE, max_tokens=MAX_TOKENS
            )
        except Exception as exc:
            logger.warning("Completion backend failed: %s", exc)
            raise GenerationFailed(f"Failed to generate draft content: {exc}") from exc
        if not text or not text.strip():
            raise GenerationFailed("Failed to generate draft content: empty response")
        return text.strip()


def reply_subject(subject: str) -> str:
    """Summary: Prefix a subject with ``Re:`` unless it already has one."""

    cleaned = subject.strip()
    if cleaned.lower().startswith("re:"):
        return cleaned
    return f"Re: {cleaned}"


def plain_to_html(text: str) -> str:
    """Summary: Derive the HTML variant of a draft from its plain text.

    Importance: HTML is mechanical, never generated independently.
    Alternatives: Ask the model for an HTML version.
    """

    escaped = html.escape(text)
    return "<p>" + escaped.replace("\r\n", "\n").replace("\n", "<br>") + "</p>"
