from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .models import CalendarEvent, EventConflict, PositionedEvent
from .utils import intervals_overlap

ConflictMap = Dict[str, EventConflict]


def _timed(events: Iterable[CalendarEvent]) -> List[CalendarEvent]:
    return [event for event in events if not event.is_all_day]


def _record(conflict_map: ConflictMap, owner: CalendarEvent, other: CalendarEvent) -> None:
    entry = conflict_map.get(owner.id)
    if entry is None:
        entry = EventConflict(event_id=owner.id)
        conflict_map[owner.id] = entry
    if other.id not in entry.conflicting_event_ids:
        entry.conflicting_event_ids.append(other.id)
        entry.conflicting_events.append(other)


def detect_conflicts(events: Iterable[CalendarEvent]) -> ConflictMap:
    """Map of event id to the events it overlaps. Only conflicting ids are keys."""
    ordered = sorted(_timed(events), key=lambda e: e.start)
    conflict_map: ConflictMap = {}
    for i, event in enumerate(ordered):
        for other in ordered[i + 1:]:
            # sorted by start: nothing later can overlap
            if other.start >= event.end:
                break
            if not intervals_overlap(event.start, event.end, other.start, other.end):
                continue
            _record(conflict_map, event, other)
            _record(conflict_map, other, event)
    return conflict_map


def has_conflict(event_id: str, conflict_map: ConflictMap) -> bool:
    return event_id in conflict_map


def get_conflict_details(event_id: str, conflict_map: ConflictMap) -> Optional[EventConflict]:
    return conflict_map.get(event_id)


def conflict_message(conflicting_events: Sequence[CalendarEvent]) -> str:
    if not conflicting_events:
        return ""
    if len(conflicting_events) == 1:
        return f'Conflicts with "{conflicting_events[0].title}"'
    names = ", ".join(f'"{event.title}"' for event in conflicting_events[:2])
    more = "..." if len(conflicting_events) > 2 else ""
    return f"Conflicts with {len(conflicting_events)} events: {names}{more}"


def layout_overlaps(day_events: Sequence[CalendarEvent]) -> List[PositionedEvent]:
    """Side-by-side columns for overlapping timed events.

    Pass one places each event (by start time) into the first column whose
    last event ends at or before it starts. Pass two widens each event's
    ``total_columns`` to one more than the highest column among every event
    it overlaps, which the greedy pass alone undercounts for staggered
    overlaps. All-day events stay in column 0 of 1. Output keeps input order.
    """
    timed = sorted(_timed(day_events), key=lambda e: e.start)

    column_of: Dict[int, int] = {}
    column_ends: List[datetime] = []
    for event in timed:
        placed = None
        for index, last_end in enumerate(column_ends):
            if last_end <= event.start:
                placed = index
                break
        if placed is None:
            placed = len(column_ends)
            column_ends.append(event.end)
        else:
            column_ends[placed] = event.end
        column_of[id(event)] = placed

    total_of: Dict[int, int] = {}
    for event in timed:
        deepest = column_of[id(event)]
        for other in timed:
            if other is event:
                continue
            if intervals_overlap(event.start, event.end, other.start, other.end):
                deepest = max(deepest, column_of[id(other)])
        total_of[id(event)] = deepest + 1

    positioned: List[PositionedEvent] = []
    for event in day_events:
        if event.is_all_day:
            positioned.append(PositionedEvent(event=event, column=0, total_columns=1))
            continue
        positioned.append(PositionedEvent(event=event,
                                          column=column_of[id(event)],
                                          total_columns=total_of[id(event)]))
    return positioned
