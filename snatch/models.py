"""Pydantic models for Claude Code JSONL transcript records."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    PrivateAttr,
    Tag,
    TypeAdapter,
)
from pydantic.alias_generators import to_camel

from snatch.date_utils import ensure_utc

KNOWN_ENTRY_TYPES = ("user", "assistant", "system", "summary")
KNOWN_BLOCK_TYPES = ("text", "thinking", "tool_use", "tool_result")


def _none_to_zero(value: Any) -> Any:
    return 0 if value is None else value


TokenCount = Annotated[int, BeforeValidator(_none_to_zero), Field(ge=0)]
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# ── Content blocks ──────────────────────────────────────────────────

class _Block(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    def to_wire(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude_unset=True)
        return {"type": self.type, **{k: v for k, v in data.items() if k != "type"}}


class TextBlock(_Block):
    type: Literal["text"] = "text"
    text: str = ""


class ThinkingBlock(_Block):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str = ""


class ToolUseBlock(_Block):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Any = Field(default_factory=dict)

    @property
    def is_server_tool(self) -> bool:
        return self.id.startswith("srvtoolu_")

    @property
    def is_mcp_tool(self) -> bool:
        return self.name.startswith("mcp__")

    @property
    def mcp_server(self) -> Optional[str]:
        if not self.is_mcp_tool:
            return None
        parts = self.name[len("mcp__"):].split("__")
        return parts[0] or None


class ToolResultBlock(_Block):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, list[Any], None] = None
    is_error: Optional[bool] = None

    @property
    def is_error_result(self) -> bool:
        return bool(self.is_error)

    def text_content(self) -> str:
        """Flatten string or `[{type: text, text: ...}]` content into plain text."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        parts: list[str] = []
        for item in self.content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)


class UnknownBlock(_Block):
    """Any block whose `type` is not modelled (images, documents, future kinds)."""

    type: str = ""


def _block_tag(value: Any) -> str:
    tag = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return tag if tag in KNOWN_BLOCK_TYPES else "unknown"


ContentBlock = Annotated[
    Union[
        Annotated[TextBlock, Tag("text")],
        Annotated[ThinkingBlock, Tag("thinking")],
        Annotated[ToolUseBlock, Tag("tool_use")],
        Annotated[ToolResultBlock, Tag("tool_result")],
        Annotated[UnknownBlock, Tag("unknown")],
    ],
    Discriminator(_block_tag),
]


# ── Messages ────────────────────────────────────────────────────────

class Usage(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    input_tokens: TokenCount = 0
    output_tokens: TokenCount = 0
    cache_creation_input_tokens: TokenCount = 0
    cache_read_input_tokens: TokenCount = 0

    @property
    def total_input_tokens(self) -> int:
        return self.input_tokens + self.cache_creation_input_tokens + self.cache_read_input_tokens

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.output_tokens


class UserMessage(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    role: str = "user"
    content: Union[str, list[ContentBlock]] = ""


class AssistantMessage(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    id: str = ""
    type: str = "message"
    role: str = "assistant"
    model: str = ""
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: Optional[str] = None
    stop_sequence: Optional[str] = None
    usage: Optional[Usage] = None


# ── Log entries ─────────────────────────────────────────────────────

class _Entry(BaseModel):
    model_config = ConfigDict(
        extra="allow",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    # The decoded JSON object, when the entry came from `decode_entry`.
    _wire: Optional[dict[str, Any]] = PrivateAttr(default=None)

    @property
    def role(self) -> str:
        return self.type

    @property
    def content_blocks(self) -> list[Any]:
        return []

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content_blocks if isinstance(b, TextBlock) and b.text)

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content_blocks if isinstance(b, ToolUseBlock)]

    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.content_blocks if isinstance(b, ToolResultBlock)]

    def thinking_blocks(self) -> list[ThinkingBlock]:
        return [b for b in self.content_blocks if isinstance(b, ThinkingBlock)]

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict in wire (camelCase) naming with unknown fields preserved.

        Decoded entries hand back their source object, so nesting depth is
        never limited by the serializer. The top level and `message` are
        copied; deeper values are shared and must not be mutated.
        """
        if self._wire is not None:
            data = {"type": self.type, **self._wire}
            if isinstance(data.get("message"), dict):
                data["message"] = dict(data["message"])
            return data
        data = self.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return {"type": self.type, **{k: v for k, v in data.items() if k != "type"}}


class _LinkedEntry(_Entry):
    parent_uuid: Optional[str] = None
    # Tri-state: None means the producer did not say, which lets the tree
    # builder inherit the flag from the parent.
    sidechain: Optional[bool] = Field(default=None, alias="isSidechain")
    cwd: Optional[str] = None
    git_branch: Optional[str] = None
    user_type: Optional[str] = None
    agent_id: Optional[str] = None
    slug: Optional[str] = None

    @property
    def is_sidechain(self) -> bool:
        return bool(self.sidechain)

    @property
    def sidechain_explicit(self) -> bool:
        return self.sidechain is not None


class UserEntry(_LinkedEntry):
    type: Literal["user"] = "user"
    uuid: str
    session_id: str
    timestamp: UtcDatetime
    version: str
    message: UserMessage
    tool_use_result: Optional[Any] = None
    is_meta: Optional[bool] = None

    @property
    def content_blocks(self) -> list[Any]:
        if isinstance(self.message.content, str):
            return [TextBlock(text=self.message.content)] if self.message.content else []
        return list(self.message.content)

    @property
    def has_tool_use_result(self) -> bool:
        return self.tool_use_result is not None


class AssistantEntry(_LinkedEntry):
    type: Literal["assistant"] = "assistant"
    uuid: str
    session_id: str
    timestamp: UtcDatetime
    version: str
    message: AssistantMessage
    request_id: Optional[str] = None

    @property
    def content_blocks(self) -> list[Any]:
        return list(self.message.content)

    @property
    def model(self) -> str:
        return self.message.model

    @property
    def usage(self) -> Usage:
        return self.message.usage or Usage()


class SystemEntry(_LinkedEntry):
    type: Literal["system"] = "system"
    uuid: str
    timestamp: UtcDatetime
    session_id: Optional[str] = None
    version: Optional[str] = None
    logical_parent_uuid: Optional[str] = None
    subtype: Optional[str] = None
    content: Optional[Any] = None
    level: Optional[str] = None
    is_meta: Optional[bool] = None
    # api_error records carry the retry schedule of a failed request.
    retry_attempt: Optional[int] = None
    max_retries: Optional[int] = None
    retry_in_ms: Optional[float] = None

    @property
    def content_blocks(self) -> list[Any]:
        if self.content is None or self.content == "":
            return []
        text = self.content if isinstance(self.content, str) else str(self.content)
        return [TextBlock(text=text)]


class SummaryEntry(_LinkedEntry):
    type: Literal["summary"] = "summary"
    summary: str
    leaf_uuid: Optional[str] = None
    uuid: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: Optional[UtcDatetime] = None
    version: Optional[str] = None
    is_compact_summary: Optional[bool] = None

    @property
    def content_blocks(self) -> list[Any]:
        return [TextBlock(text=self.summary)] if self.summary else []


class UnknownEntry(_Entry):
    """A record whose `type` is not modelled; every key is kept verbatim."""

    type: str

    @property
    def raw(self) -> dict[str, Any]:
        return self.to_wire()

    def _raw_str(self, key: str) -> Optional[str]:
        value = (self.model_extra or {}).get(key)
        return value if isinstance(value, str) else None

    @property
    def uuid(self) -> Optional[str]:
        return self._raw_str("uuid")

    @property
    def parent_uuid(self) -> Optional[str]:
        return self._raw_str("parentUuid")

    @property
    def session_id(self) -> Optional[str]:
        return self._raw_str("sessionId")

    @property
    def version(self) -> Optional[str]:
        return self._raw_str("version")

    @property
    def timestamp(self) -> Optional[datetime]:
        return None

    @property
    def is_sidechain(self) -> bool:
        return False

    @property
    def sidechain_explicit(self) -> bool:
        return False


def _entry_tag(value: Any) -> str:
    tag = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return tag if tag in KNOWN_ENTRY_TYPES else "unknown"


LogEntry = Annotated[
    Union[
        Annotated[UserEntry, Tag("user")],
        Annotated[AssistantEntry, Tag("assistant")],
        Annotated[SystemEntry, Tag("system")],
        Annotated[SummaryEntry, Tag("summary")],
        Annotated[UnknownEntry, Tag("unknown")],
    ],
    Discriminator(_entry_tag),
]

_ENTRY_ADAPTER: TypeAdapter[Any] = TypeAdapter(LogEntry)


def decode_entry(obj: Any) -> Any:
    """Validate one decoded JSON value into its log-entry variant.

    Raises ValueError for non-object values or a missing `type`, and
    pydantic.ValidationError (also a ValueError) for schema failures.
    """
    if not isinstance(obj, dict):
        raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
    if not isinstance(obj.get("type"), str):
        raise ValueError("missing record type")
    entry = _ENTRY_ADAPTER.validate_python(obj)
    entry._wire = obj
    return entry
