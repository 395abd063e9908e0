"""Conversation tree reconstruction from parent-pointer links.

Records arrive in file order and point at their parent through
`parentUuid`. A `Conversation` indexes them by uuid, derives the child lists,
roots, branch points and sidechain regions, and selects the main thread: the
longest non-sidechain path, following the heaviest child at each branch.

Irregular input never aborts the build. Duplicate uuids keep the first
record, unresolved or self-referencing parents turn the record into a root,
and parent cycles are broken at their earliest-arriving member. Each of these
is recorded as a `TreeIssue`.

All traversals are iterative so that very deep threads cannot exhaust the
interpreter stack.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from snatch.errors import EmptyInputError, ErrorKind, TreeIssue
from snatch.models import AssistantEntry, SummaryEntry, SystemEntry, UserEntry
from snatch.observability import record_ingestion, start_span

logger = logging.getLogger("snatch.tree")

TREE_VARIANTS = (UserEntry, AssistantEntry, SystemEntry, SummaryEntry)


class WalkOrder(str, Enum):
    DEPTH_FIRST = "depth_first"
    BREADTH_FIRST = "breadth_first"


def node_uuid(entry: Any) -> Optional[str]:
    """The uuid an entry is indexed under, or None when it stays detached."""
    if not isinstance(entry, TREE_VARIANTS):
        return None
    return entry.uuid or None


class Conversation:
    """Read-only tree view over the records of one transcript."""

    def __init__(self, entries: Iterable[Any]) -> None:
        self._nodes: dict[str, Any] = {}
        self._arrival: dict[str, int] = {}
        self._retained: list[Any] = []
        self._detached: list[Any] = []
        self._issues: list[TreeIssue] = []

        for entry in entries:
            uuid = node_uuid(entry)
            if uuid is None:
                self._detached.append(entry)
                self._retained.append(entry)
                continue
            if uuid in self._nodes:
                self._issues.append(
                    TreeIssue(
                        ErrorKind.DUPLICATE_UUID,
                        uuid,
                        f"duplicate uuid {uuid}; keeping the first occurrence",
                    )
                )
                continue
            self._arrival[uuid] = len(self._nodes)
            self._nodes[uuid] = entry
            self._retained.append(entry)

        if not self._nodes:
            raise EmptyInputError()

        self._parent: dict[str, Optional[str]] = {}
        self._children: dict[str, list[str]] = {uuid: [] for uuid in self._nodes}
        self._roots: list[str] = []
        self._link()
        self._break_cycles()
        self._roots.sort(key=self._arrival.__getitem__)

        self._sidechain: dict[str, bool] = {}
        self._depth: dict[str, int] = {}
        self._descendants: dict[str, int] = {}
        self._measure()

        self._branch_points = [u for u in self._nodes if len(self._children[u]) >= 2]
        self._sidechain_heads = [
            u
            for u in self._nodes
            if self._sidechain[u]
            and (self._parent[u] is None or not self._sidechain[self._parent[u]])
        ]
        self._main_thread = self._select_main_thread()

        self._tool_use_owner: dict[str, str] = {}
        self._tool_result_holders: dict[str, list[str]] = {}
        self._index_tools()

    @classmethod
    def from_entries(cls, entries: Iterable[Any]) -> "Conversation":
        return cls(entries)

    # ── construction ────────────────────────────────────────────────

    def _link(self) -> None:
        for uuid, entry in self._nodes.items():
            parent = entry.parent_uuid or None
            if parent is not None and parent != uuid and parent in self._nodes:
                self._parent[uuid] = parent
                self._children[parent].append(uuid)
                continue
            self._parent[uuid] = None
            self._roots.append(uuid)
            if parent == uuid:
                self._issues.append(
                    TreeIssue(ErrorKind.ORPHAN_PARENT, uuid, f"record {uuid} names itself as parent")
                )
            elif parent is not None:
                self._issues.append(
                    TreeIssue(
                        ErrorKind.ORPHAN_PARENT,
                        uuid,
                        f"parent {parent} of record {uuid} is not in the transcript",
                    )
                )

    def _mark_reachable(self, start: str, reached: set[str]) -> None:
        queue = deque([start])
        while queue:
            uuid = queue.popleft()
            if uuid in reached:
                continue
            reached.add(uuid)
            queue.extend(self._children[uuid])

    def _break_cycles(self) -> None:
        reached: set[str] = set()
        for root in self._roots:
            self._mark_reachable(root, reached)
        if len(reached) == len(self._nodes):
            return
        for start in self._nodes:
            if start in reached:
                continue
            # Every unreached node hangs below a cycle; climb until a uuid repeats.
            seen: dict[str, int] = {}
            node = start
            while node not in seen:
                seen[node] = len(seen)
                node = self._parent[node]
            cycle = [u for u, step in seen.items() if step >= seen[node]]
            head = min(cycle, key=self._arrival.__getitem__)
            self._children[self._parent[head]].remove(head)
            self._parent[head] = None
            self._roots.append(head)
            self._issues.append(
                TreeIssue(
                    ErrorKind.ORPHAN_PARENT,
                    head,
                    f"record {head} is part of a parent cycle; promoted to root",
                )
            )
            self._mark_reachable(head, reached)

    def _measure(self) -> None:
        order: list[str] = []
        queue = deque(self._roots)
        for root in self._roots:
            entry = self._nodes[root]
            self._sidechain[root] = entry.is_sidechain if entry.sidechain_explicit else False
            self._depth[root] = 0
        while queue:
            uuid = queue.popleft()
            order.append(uuid)
            for child in self._children[uuid]:
                entry = self._nodes[child]
                self._sidechain[child] = (
                    entry.is_sidechain if entry.sidechain_explicit else self._sidechain[uuid]
                )
                self._depth[child] = self._depth[uuid] + 1
                queue.append(child)
        for uuid in reversed(order):
            self._descendants[uuid] = sum(self._descendants[c] + 1 for c in self._children[uuid])

    def _select_main_thread(self) -> list[str]:
        node = next((r for r in self._roots if not self._sidechain[r]), None)
        thread: list[str] = []
        while node is not None:
            thread.append(node)
            best: Optional[str] = None
            for child in self._children[node]:
                if self._sidechain[child]:
                    continue
                if best is None or self._descendants[child] > self._descendants[best]:
                    best = child
            node = best
        return thread

    def _index_tools(self) -> None:
        for uuid, entry in self._nodes.items():
            for block in entry.tool_uses():
                self._tool_use_owner.setdefault(block.id, uuid)
            for block in entry.tool_results():
                self._tool_result_holders.setdefault(block.tool_use_id, []).append(uuid)

    # ── shape ───────────────────────────────────────────────────────

    @property
    def is_empty(self) -> bool:
        return not self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, uuid: object) -> bool:
        return uuid in self._nodes

    @property
    def roots(self) -> list[str]:
        return list(self._roots)

    @property
    def has_branches(self) -> bool:
        return bool(self._branch_points)

    @property
    def branch_points(self) -> list[str]:
        return list(self._branch_points)

    @property
    def branch_count(self) -> int:
        return len(self._branch_points)

    @property
    def sidechain_heads(self) -> list[str]:
        return list(self._sidechain_heads)

    def is_sidechain(self, uuid: str) -> bool:
        return self._sidechain.get(uuid, False)

    @property
    def main_thread(self) -> list[str]:
        return list(self._main_thread)

    def main_thread_entries(self) -> list[Any]:
        return [self._nodes[u] for u in self._main_thread]

    @property
    def max_depth(self) -> int:
        return max(self._depth.values(), default=0)

    @property
    def detached(self) -> list[Any]:
        return list(self._detached)

    @property
    def issues(self) -> list[TreeIssue]:
        return list(self._issues)

    @property
    def session_id(self) -> Optional[str]:
        for entry in self._nodes.values():
            if entry.session_id:
                return entry.session_id
        return None

    # ── per-node queries ────────────────────────────────────────────

    def get(self, uuid: str) -> Optional[Any]:
        return self._nodes.get(uuid)

    def children_of(self, uuid: str) -> list[str]:
        return list(self._children.get(uuid, ()))

    def parent_of(self, uuid: str) -> Optional[str]:
        return self._parent.get(uuid)

    def depth_of(self, uuid: str) -> Optional[int]:
        return self._depth.get(uuid)

    def descendant_count(self, uuid: str) -> int:
        return self._descendants.get(uuid, 0)

    def path_to(self, uuid: str) -> list[str]:
        """Uuids from the root down to `uuid`; empty for unknown uuids."""
        if uuid not in self._nodes:
            return []
        path: list[str] = []
        node: Optional[str] = uuid
        while node is not None:
            path.append(node)
            node = self._parent[node]
        path.reverse()
        return path

    def is_ancestor(self, ancestor: str, uuid: str) -> bool:
        """True when `ancestor` lies strictly above `uuid` on its root path."""
        if ancestor not in self._nodes or uuid not in self._nodes:
            return False
        node = self._parent.get(uuid)
        while node is not None:
            if node == ancestor:
                return True
            node = self._parent[node]
        return False

    def tool_use_owner(self, tool_use_id: str) -> Optional[str]:
        return self._tool_use_owner.get(tool_use_id)

    def tool_result_for(self, tool_use_id: str) -> Optional[str]:
        """Uuid of the first descendant record carrying the result of a tool use."""
        owner = self._tool_use_owner.get(tool_use_id)
        if owner is None:
            return None
        for holder in self._tool_result_holders.get(tool_use_id, ()):
            if self.is_ancestor(owner, holder):
                return holder
        return None

    # ── iteration ───────────────────────────────────────────────────

    def walk(self, order: WalkOrder = WalkOrder.DEPTH_FIRST) -> Iterator[Any]:
        """Yield every tree entry; each call starts a fresh traversal."""
        if WalkOrder(order) is WalkOrder.BREADTH_FIRST:
            return self._walk_breadth_first()
        return self._walk_depth_first()

    def _walk_depth_first(self) -> Iterator[Any]:
        stack = list(reversed(self._roots))
        while stack:
            uuid = stack.pop()
            yield self._nodes[uuid]
            stack.extend(reversed(self._children[uuid]))

    def _walk_breadth_first(self) -> Iterator[Any]:
        queue = deque(self._roots)
        while queue:
            uuid = queue.popleft()
            yield self._nodes[uuid]
            queue.extend(self._children[uuid])

    def entries(self) -> list[Any]:
        """Every retained entry, tree nodes and detached ones, in arrival order."""
        return list(self._retained)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._retained)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Conversation):
            return NotImplemented
        return self._retained == other._retained and self._issues == other._issues

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"Conversation(nodes={len(self._nodes)}, roots={len(self._roots)}, "
            f"branches={len(self._branch_points)}, detached={len(self._detached)})"
        )


def build_conversation(entries: Iterable[Any], *, source: str = "") -> Conversation:
    """Build a `Conversation`, with logging and telemetry around the build."""
    t0 = time.monotonic()
    with start_span("snatch.build_tree", {"snatch.source": source or None}) as span:
        try:
            conversation = Conversation.from_entries(entries)
        except EmptyInputError:
            record_ingestion("conversation", "empty", (time.monotonic() - t0) * 1000, source=source)
            raise
        if span is not None:
            span.set_attribute("snatch.nodes", len(conversation))
            span.set_attribute("snatch.branch_points", conversation.branch_count)
    record_ingestion("conversation", "success", (time.monotonic() - t0) * 1000, source=source)

    duplicates = sum(1 for i in conversation.issues if i.kind is ErrorKind.DUPLICATE_UUID)
    orphans = sum(1 for i in conversation.issues if i.kind is ErrorKind.ORPHAN_PARENT)
    for issue in conversation.issues:
        logger.debug("%s", issue)
    if duplicates:
        logger.warning("Dropped %d records with duplicate uuids", duplicates)
    if orphans:
        logger.warning("Promoted %d records with unresolved parents to roots", orphans)
    logger.info(
        "Built conversation: %d nodes, %d roots, %d branch points, main thread %d",
        len(conversation),
        len(conversation.roots),
        conversation.branch_count,
        len(conversation.main_thread),
    )
    return conversation
