"""Aggregate statistics derived from a built conversation."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from snatch.errors import ErrorKind
from snatch.models import AssistantEntry, SummaryEntry, SystemEntry, UserEntry
from snatch.reconstruction.conversation import Conversation
from snatch.reconstruction.messages import group_messages, retry_statistics, track_retries

logger = logging.getLogger("snatch.analytics")

U64_MAX = 2**64 - 1


class _StatsModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class MessageCounts(_StatsModel):
    user: int = 0
    assistant: int = 0
    system: int = 0
    summary: int = 0
    unknown: int = 0
    total: int = 0


class TokenUsage(_StatsModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    total_tokens: int = 0


class TimeSpan(_StatsModel):
    start: datetime
    end: datetime

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.end - self.start).total_seconds())


class ConversationStatistics(_StatsModel):
    message_counts: MessageCounts = Field(default_factory=MessageCounts)
    tool_counts: dict[str, int] = Field(default_factory=dict)
    tool_uses: int = 0
    tool_result_blocks: int = 0
    tool_use_result_records: int = 0
    tool_results_total: int = 0
    tools_balanced: bool = True
    unanswered_tool_uses: list[str] = Field(default_factory=list)
    unmatched_tool_results: list[str] = Field(default_factory=list)
    error_tool_results: int = 0
    thinking_blocks: int = 0
    assistant_messages: int = 0
    retry_chains: int = 0
    api_retries: int = 0
    retry_recoveries: int = 0
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    time_span: Optional[TimeSpan] = None
    duration_seconds: Optional[float] = None
    duplicate_uuids: int = 0
    orphan_parents: int = 0
    branch_count: int = 0
    max_depth: int = 0
    main_thread_length: int = 0
    sidechain_count: int = 0
    models: dict[str, int] = Field(default_factory=dict)
    primary_model: Optional[str] = None
    overflow: bool = False

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class _Saturating:
    """Addition clamped at the largest unsigned 64-bit value."""

    def __init__(self) -> None:
        self.overflow = False

    def add(self, total: int, amount: int) -> int:
        result = total + amount
        if result > U64_MAX:
            self.overflow = True
            return U64_MAX
        return result


def _variant_name(entry: Any) -> str:
    if isinstance(entry, UserEntry):
        return "user"
    if isinstance(entry, AssistantEntry):
        return "assistant"
    if isinstance(entry, SystemEntry):
        return "system"
    if isinstance(entry, SummaryEntry):
        return "summary"
    return "unknown"


def compute_statistics(conversation: Conversation) -> ConversationStatistics:
    """Derive counts, token sums and tree shape figures; never mutates its input."""
    sat = _Saturating()

    counts: Counter[str] = Counter()
    tool_counts: Counter[str] = Counter()
    models: Counter[str] = Counter()
    usage = {
        "input_tokens": 0,
        "output_tokens": 0,
        "cache_creation_input_tokens": 0,
        "cache_read_input_tokens": 0,
    }
    tool_uses = tool_result_blocks = tool_use_result_records = 0
    error_results = thinking = 0
    unanswered: list[str] = []
    unmatched: list[str] = []
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None

    for entry in conversation.entries():
        counts[_variant_name(entry)] += 1

        timestamp = getattr(entry, "timestamp", None)
        if isinstance(timestamp, datetime):
            earliest = timestamp if earliest is None or timestamp < earliest else earliest
            latest = timestamp if latest is None or timestamp > latest else latest

        uses = entry.tool_uses()
        results = entry.tool_results()
        for block in uses:
            tool_counts[block.name] += 1
            tool_uses = sat.add(tool_uses, 1)
            if conversation.tool_result_for(block.id) is None:
                unanswered.append(block.id)
        for block in results:
            tool_result_blocks = sat.add(tool_result_blocks, 1)
            if block.is_error_result:
                error_results += 1
            owner = conversation.tool_use_owner(block.tool_use_id)
            holder = entry.uuid if isinstance(entry, UserEntry) else None
            if owner is None or holder is None or not conversation.is_ancestor(owner, holder):
                unmatched.append(block.tool_use_id)
        if isinstance(entry, UserEntry) and entry.has_tool_use_result and not results:
            tool_use_result_records = sat.add(tool_use_result_records, 1)

        thinking = sat.add(thinking, len(entry.thinking_blocks()))

        if isinstance(entry, AssistantEntry):
            if entry.model:
                models[entry.model] += 1
            entry_usage = entry.usage
            for bucket in usage:
                usage[bucket] = sat.add(usage[bucket], getattr(entry_usage, bucket))

    total_tokens = 0
    for value in usage.values():
        total_tokens = sat.add(total_tokens, value)
    tool_results_total = sat.add(tool_result_blocks, tool_use_result_records)

    retries = retry_statistics(track_retries(conversation))
    issues = conversation.issues
    time_span = TimeSpan(start=earliest, end=latest) if earliest and latest else None

    stats = ConversationStatistics(
        message_counts=MessageCounts(
            user=counts["user"],
            assistant=counts["assistant"],
            system=counts["system"],
            summary=counts["summary"],
            unknown=counts["unknown"],
            total=sum(counts.values()),
        ),
        tool_counts=dict(tool_counts.most_common()),
        tool_uses=tool_uses,
        tool_result_blocks=tool_result_blocks,
        tool_use_result_records=tool_use_result_records,
        tool_results_total=tool_results_total,
        tools_balanced=tool_uses == tool_results_total,
        unanswered_tool_uses=unanswered,
        unmatched_tool_results=unmatched,
        error_tool_results=error_results,
        thinking_blocks=thinking,
        assistant_messages=len(group_messages(conversation)),
        retry_chains=retries.total_chains,
        api_retries=retries.total_retries,
        retry_recoveries=retries.successful_recoveries,
        token_usage=TokenUsage(total_tokens=total_tokens, **usage),
        time_span=time_span,
        duration_seconds=time_span.duration_seconds if time_span else None,
        duplicate_uuids=sum(1 for i in issues if i.kind is ErrorKind.DUPLICATE_UUID),
        orphan_parents=sum(1 for i in issues if i.kind is ErrorKind.ORPHAN_PARENT),
        branch_count=conversation.branch_count,
        max_depth=conversation.max_depth,
        main_thread_length=len(conversation.main_thread),
        sidechain_count=sum(1 for e in conversation.walk() if conversation.is_sidechain(e.uuid)),
        models=dict(models.most_common()),
        primary_model=models.most_common(1)[0][0] if models else None,
        overflow=sat.overflow,
    )
    if sat.overflow:
        logger.warning("Statistics counter saturated at %d; totals are lower bounds", U64_MAX)
    return stats
