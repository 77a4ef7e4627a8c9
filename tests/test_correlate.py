from __future__ import annotations

from datetime import datetime, timedelta, timezone

from schtask_inventory.correlate import match_history
from schtask_inventory.eventlog import HistoryEvent

BASE = datetime(2024, 4, 30, tzinfo=timezone.utc)


def _event(name: str | None, minutes: int, event_id: int = 102) -> HistoryEvent:
    return HistoryEvent(BASE + timedelta(minutes=minutes), event_id, name)


def test_matches_exact_name_newest_first() -> None:
    events = [
        _event("\\Contoso\\Backup", 1),
        _event("\\Contoso\\Report", 2),
        _event("\\Contoso\\Backup", 3),
        _event(None, 4),
    ]

    matches = match_history(events, "\\Contoso\\Backup")

    assert [e.time_created for e in matches] == [
        BASE + timedelta(minutes=3),
        BASE + timedelta(minutes=1),
    ]


def test_caps_at_five_most_recent() -> None:
    events = [_event("\\Backup", m) for m in range(12)]

    matches = match_history(events, "\\Backup")

    assert len(matches) == 5
    assert [e.time_created.minute for e in matches] == [11, 10, 9, 8, 7]


def test_respects_custom_limit() -> None:
    events = [_event("\\Backup", m) for m in range(4)]

    assert len(match_history(events, "\\Backup", limit=2)) == 2


def test_no_normalization_of_case_or_separators() -> None:
    events = [_event("\\contoso\\backup", 1), _event("/Contoso/Backup", 2), _event("Contoso\\Backup", 3)]

    assert match_history(events, "\\Contoso\\Backup") == []


def test_no_events() -> None:
    assert match_history([], "\\Backup") == []
