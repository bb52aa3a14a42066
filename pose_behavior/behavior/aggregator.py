from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple, Union

from pose_behavior.config import HISTORY_CAPACITY

from .types import BehaviorLabel, ClassificationResult

TIMESTAMP_FORMAT = "%H:%M:%S"
EMPTY_SUMMARY_TEXT = "No behavior detected."


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: str
    behavior: BehaviorLabel


@dataclass(frozen=True)
class BehaviorHistory:
    """Bounded audit log, newest entry first."""

    entries: Tuple[HistoryEntry, ...] = ()
    capacity: int = HISTORY_CAPACITY

    def __post_init__(self) -> None:
        if int(self.capacity) < 1:
            raise ValueError(f"history capacity must be >= 1, got {self.capacity}")

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class SummaryState:
    last_labels: ClassificationResult = ()
    summary_text: str = EMPTY_SUMMARY_TEXT


def format_timestamp(now: Union[datetime, str, None] = None) -> str:
    if isinstance(now, str):
        return now
    if now is None:
        now = datetime.now()
    return now.strftime(TIMESTAMP_FORMAT)


def append(
    history: BehaviorHistory,
    result: ClassificationResult,
    now: Union[datetime, str, None] = None,
) -> BehaviorHistory:
    """Prepend one entry per label (all stamped `now`) and evict beyond capacity.

    Identical labels from consecutive cycles are logged again; nothing is
    deduplicated. The input history is left untouched.
    """

    if not result:
        return history

    ts = format_timestamp(now)
    new_entries = tuple(HistoryEntry(timestamp=ts, behavior=label) for label in result)
    merged = (new_entries + history.entries)[: int(history.capacity)]
    return BehaviorHistory(entries=merged, capacity=history.capacity)


def render_summary(labels: ClassificationResult) -> str:
    if not labels:
        return EMPTY_SUMMARY_TEXT
    return "You are currently " + ", ".join(label.value for label in labels) + "."


def update(state: SummaryState, result: ClassificationResult) -> Tuple[bool, str]:
    """Replace the running summary when the label sequence changes.

    Comparison is order-sensitive. Returns (changed, summary_text); the state is
    mutated only when changed is True.
    """

    new_labels = tuple(result)
    if new_labels == tuple(state.last_labels):
        return False, state.summary_text

    state.last_labels = new_labels
    state.summary_text = render_summary(new_labels)
    return True, state.summary_text


class HistoryAggregator:
    """Owns one BehaviorHistory for a session."""

    mode = "history"

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        self.state = BehaviorHistory(capacity=int(capacity))

    def feed(self, result: ClassificationResult, now: Union[datetime, str, None] = None) -> bool:
        before = self.state
        self.state = append(self.state, result, now)
        return self.state is not before

    def snapshot(self) -> BehaviorHistory:
        return self.state


class SummaryAggregator:
    """Owns one SummaryState for a session."""

    mode = "summary"

    def __init__(self) -> None:
        self.state = SummaryState()

    def feed(self, result: ClassificationResult, now: Union[datetime, str, None] = None) -> bool:
        changed, _ = update(self.state, result)
        return changed

    def snapshot(self) -> SummaryState:
        # Copy so readers never observe a later in-place update.
        return SummaryState(last_labels=self.state.last_labels, summary_text=self.state.summary_text)


Aggregator = Union[HistoryAggregator, SummaryAggregator]


def make_aggregator(mode: str, capacity: Optional[int] = None) -> Aggregator:
    m = str(mode).strip().lower()
    if m == "history":
        return HistoryAggregator(capacity=HISTORY_CAPACITY if capacity is None else int(capacity))
    if m == "summary":
        return SummaryAggregator()
    raise ValueError(f"Unsupported aggregation mode={mode}. Use one of: history, summary")
