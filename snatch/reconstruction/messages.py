"""Logical assistant messages and API retry chains.

Claude Code streams one API response into several assistant records that
share `message.id`, typically one record per content block. Grouping them
back together gives the message as the model produced it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from snatch.models import (
    AssistantEntry,
    SystemEntry,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
    Usage,
)
from snatch.reconstruction.conversation import Conversation

logger = logging.getLogger("snatch.reconstruction")

API_ERROR_SUBTYPE = "api_error"


@dataclass
class MessageGroup:
    """Assistant records sharing one `message.id`, in arrival order."""

    message_id: str
    chunks: list[AssistantEntry] = field(default_factory=list)

    @property
    def first(self) -> AssistantEntry:
        return self.chunks[0]

    @property
    def last(self) -> AssistantEntry:
        return self.chunks[-1]

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def uuid(self) -> str:
        return self.first.uuid

    @property
    def timestamp(self) -> datetime:
        return self.first.timestamp

    @property
    def model(self) -> str:
        return self.first.model

    @property
    def stop_reason(self) -> Optional[str]:
        return self.last.message.stop_reason

    @property
    def usage(self) -> Usage:
        # Every chunk repeats the running usage; the last one is final.
        return self.last.usage

    @property
    def content(self) -> list[Any]:
        return [block for chunk in self.chunks for block in chunk.message.content]

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock) and b.text)

    @property
    def thinking(self) -> str:
        return "\n".join(b.thinking for b in self.content if isinstance(b, ThinkingBlock) and b.thinking)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def has_thinking(self) -> bool:
        return any(isinstance(b, ThinkingBlock) for b in self.content)

    @property
    def has_tool_use(self) -> bool:
        return any(isinstance(b, ToolUseBlock) for b in self.content)


def group_messages(conversation: Conversation) -> list[MessageGroup]:
    """Merge assistant records into logical messages, ordered by first arrival.

    Records without a message id stand alone under their own uuid.
    """
    groups: dict[str, MessageGroup] = {}
    for entry in conversation.entries():
        if not isinstance(entry, AssistantEntry):
            continue
        key = entry.message.id or entry.uuid
        group = groups.get(key)
        if group is None:
            group = groups[key] = MessageGroup(message_id=key)
        group.chunks.append(entry)
    return list(groups.values())


# ── retry chains ────────────────────────────────────────────────────

@dataclass(frozen=True)
class RetryAttempt:
    uuid: str
    retry_attempt: int
    max_retries: Optional[int]
    retry_in_ms: float
    timestamp: datetime


@dataclass
class RetryChain:
    """Consecutive `api_error` records retrying one request."""

    anchor: str
    attempts: list[RetryAttempt] = field(default_factory=list)
    succeeded: bool = False

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def total_delay_ms(self) -> float:
        return sum(a.retry_in_ms for a in self.attempts)


@dataclass
class RetryStatistics:
    total_chains: int = 0
    total_retries: int = 0
    max_retries_seen: int = 0
    successful_recoveries: int = 0

    @property
    def success_rate(self) -> float:
        if not self.total_chains:
            return 0.0
        return 100.0 * self.successful_recoveries / self.total_chains


def track_retries(conversation: Conversation) -> list[RetryChain]:
    """Collect retry chains from `api_error` system records.

    A second or later attempt whose parent is the latest attempt of a chain
    extends that chain. Any other attempt starts a new chain anchored at its
    parent, or at itself when it has none. A chain succeeded when an assistant record
    descends from its last attempt.
    """
    chains: list[RetryChain] = []
    by_tail: dict[str, RetryChain] = {}
    for entry in conversation.entries():
        if not isinstance(entry, SystemEntry) or entry.subtype != API_ERROR_SUBTYPE:
            continue
        if entry.retry_attempt is None:
            continue
        attempt = RetryAttempt(
            uuid=entry.uuid,
            retry_attempt=entry.retry_attempt,
            max_retries=entry.max_retries,
            retry_in_ms=entry.retry_in_ms or 0.0,
            timestamp=entry.timestamp,
        )
        chain = None
        if entry.parent_uuid and entry.retry_attempt > 1:
            chain = by_tail.pop(entry.parent_uuid, None)
        if chain is None:
            chain = RetryChain(anchor=entry.parent_uuid or entry.uuid)
            chains.append(chain)
        chain.attempts.append(attempt)
        by_tail[entry.uuid] = chain

    if chains:
        replies = [e.uuid for e in conversation.walk() if isinstance(e, AssistantEntry)]
        for chain in chains:
            tail = chain.attempts[-1].uuid
            chain.succeeded = any(conversation.is_ancestor(tail, reply) for reply in replies)
        logger.debug("Found %d API retry chains", len(chains))
    return chains


def retry_statistics(chains: list[RetryChain]) -> RetryStatistics:
    stats = RetryStatistics(total_chains=len(chains))
    for chain in chains:
        stats.total_retries += chain.attempt_count
        stats.max_retries_seen = max(
            stats.max_retries_seen, max((a.retry_attempt for a in chain.attempts), default=0)
        )
        if chain.succeeded:
            stats.successful_recoveries += 1
    return stats
