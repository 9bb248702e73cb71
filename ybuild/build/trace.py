"""In-memory trace sink.

Spans form a forest. Children are grouped by parent ID when they are
recorded, so rendering does not depend on the order spans arrive in.
"""

from __future__ import annotations

import contextvars
import logging
import secrets
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from ybuild.types import SpanStatus

logger = logging.getLogger(__name__)

TIME_FORMAT = "%H:%M:%S %Z"

START_WIDTH = 14
END_WIDTH = 14
ELAPSED_WIDTH = 14

# Subtrees deeper than this are elided from the rendered table
MAX_RENDER_DEPTH = 3

_INDENT = "  "

_current_span: contextvars.ContextVar[Span | None] = contextvars.ContextVar(
    "ybuild_current_span", default=None
)


def _now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class Span:
    """A timed unit of work.

    Attributes:
        span_id: Unique ID.
        parent_id: ID of the enclosing span; None for roots.
        name: Human-readable name.
        start_time: When the work started.
        end_time: When the work finished (None while running).
        status: Outcome.
        message: Error description for failed spans.
    """

    name: str
    parent_id: str | None = None
    span_id: str = field(default_factory=lambda: secrets.token_hex(8))
    start_time: datetime = field(default_factory=_now)
    end_time: datetime | None = None
    status: SpanStatus = SpanStatus.UNSET
    message: str | None = None

    @property
    def elapsed(self) -> float:
        """Duration in seconds (0 while running)."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def end(self, status: SpanStatus = SpanStatus.OK, message: str | None = None) -> None:
        if self.end_time is None:
            self.end_time = _now()
        self.status = status
        self.message = message


class TraceSink:
    """Collects finished spans. Safe to use from several threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._roots: list[Span] = []
        self._children: dict[str, list[Span]] = {}

    def record_span(self, span: Span) -> None:
        """Save a finished span; spans without a parent are roots."""
        with self._lock:
            if span.parent_id is None:
                self._roots.append(span)
            else:
                self._children.setdefault(span.parent_id, []).append(span)

    @contextmanager
    def span(self, name: str, root: bool = False) -> Iterator[Span]:
        """Time a block of work as a span.

        The span's parent is the span active in the current context, unless
        root is set. The span is recorded when the block exits; an exception
        marks it failed and propagates.
        """
        parent = None if root else _current_span.get()
        span = Span(name=name, parent_id=parent.span_id if parent else None)
        token = _current_span.set(span)
        try:
            yield span
        except BaseException as e:
            span.end(SpanStatus.ERROR, str(e))
            raise
        else:
            if span.status is SpanStatus.UNSET:
                span.end(SpanStatus.OK)
            else:
                span.end(span.status, span.message)
        finally:
            _current_span.reset(token)
            self.record_span(span)

    def spans(self) -> list[Span]:
        """All recorded spans, roots first."""
        with self._lock:
            result = list(self._roots)
            for children in self._children.values():
                result.extend(children)
            return result

    def render(self) -> str:
        """Format recorded spans as a hierarchical table.

        Safe to call while other threads record spans.
        """
        lines = [
            f"{'Start':<{START_WIDTH}} {'End':<{END_WIDTH}} {'Elapsed':<{ELAPSED_WIDTH}}"
        ]
        with self._lock:
            self._render_locked(lines, None, 0)
        return "\n".join(lines) + "\n"

    def _render_locked(self, lines: list[str], parent_id: str | None, depth: int) -> None:
        spans = self._roots if parent_id is None else self._children.get(parent_id, [])
        if depth >= MAX_RENDER_DEPTH:
            if spans:
                pad = " " * (START_WIDTH + END_WIDTH + ELAPSED_WIDTH + 3)
                lines.append(f"{pad}{_INDENT * depth}...")
            return
        for span in sorted(spans, key=lambda s: s.start_time):
            end = span.end_time.strftime(TIME_FORMAT) if span.end_time else "-"
            marker = " (failed)" if span.status is SpanStatus.ERROR else ""
            lines.append(
                f"{span.start_time.strftime(TIME_FORMAT):<{START_WIDTH}} "
                f"{end:<{END_WIDTH}} "
                f"{span.elapsed:>{ELAPSED_WIDTH - 1}.3f}s "
                f"{_INDENT * depth}{span.name}{marker}"
            )
            self._render_locked(lines, span.span_id, depth + 1)


__all__ = ["MAX_RENDER_DEPTH", "Span", "TraceSink"]
