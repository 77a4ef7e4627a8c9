"""Output records written to the active-response log.

Every record is one compact JSON object on a single line. All variants share
the same envelope (timestamp, host, action, copilot_action, item) and are told
apart by ``item``.
"""

import json
import socket
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

DEFAULT_ACTION = "list_scheduled_tasks"
HISTORY_ACTION = "scheduled_task_history"


def to_iso8601(value) -> str | None:
    """Render a datetime as ``YYYY-MM-DDTHH:MM:SSZ`` in UTC.

    The Task Scheduler reports "never" as a date in 1899, so anything that is
    not a datetime after 1900 becomes None.
    """
    if not isinstance(value, datetime) or value.year <= 1900:
        return None
    if value.tzinfo is None:
        value = local_to_utc(value)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def local_to_utc(value: datetime) -> datetime:
    """Attach the host's UTC offset to a naive local time.

    The platform conversion fails for dates before 1970 on Windows; those use
    the current offset instead.
    """
    try:
        return value.astimezone(timezone.utc)
    except (OSError, OverflowError, ValueError):
        return value.replace(tzinfo=datetime.now().astimezone().tzinfo)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: str
    host: str
    action: str
    copilot_action: Literal[True] = True


class ConfigRecord(Envelope):
    item: Literal["config"] = "config"
    note: str


class EventsFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    logName: str
    eventIds: list[int]
    startTime: str | None


class VerifySourceRecord(Envelope):
    item: Literal["verify_source"] = "verify_source"
    sources: list[str]
    events_filter: EventsFilter


class SummaryRecord(Envelope):
    item: Literal["summary"] = "summary"
    task_count: int
    events_loaded: int


class TaskRecord(Envelope):
    item: Literal["task"] = "task"
    task_name: str
    full_name: str
    path: str
    state: str
    last_run_time: str | None
    next_run_time: str | None
    last_task_result: int | None
    author: str | None
    run_level: str | None
    triggers: str
    actions: str


class HistoryRecord(Envelope):
    item: Literal["history"] = "history"
    task_name: str
    full_name: str
    path: str
    event_id: int
    result: str | None


class ErrorRecord(Envelope):
    item: Literal["error"] = "error"
    error: str


OutputRecord = Annotated[
    Union[
        ConfigRecord,
        VerifySourceRecord,
        SummaryRecord,
        TaskRecord,
        HistoryRecord,
        ErrorRecord,
    ],
    Field(discriminator="item"),
]

RECORD_TYPES = {
    "config": ConfigRecord,
    "verify_source": VerifySourceRecord,
    "summary": SummaryRecord,
    "task": TaskRecord,
    "history": HistoryRecord,
    "error": ErrorRecord,
}

_record_adapter = TypeAdapter(OutputRecord)


def to_line(record: Envelope) -> str:
    """Serialize a record as one ASCII-only JSON line."""
    return json.dumps(
        record.model_dump(mode="json"), ensure_ascii=True, separators=(",", ":")
    )


def parse_line(line: str) -> Envelope:
    """Parse a line written by :func:`to_line` back into its record type."""
    return _record_adapter.validate_json(line)


class RecordBuilder:
    """Builds output records, filling the envelope fields the caller left out."""

    def __init__(self, host=None, action=DEFAULT_ACTION, clock=utc_now) -> None:
        self.host = host or socket.gethostname()
        self.action = action
        self.clock = clock

    def build(self, variant: str, **fields) -> Envelope:
        try:
            record_type = RECORD_TYPES[variant]
        except KeyError:
            raise ValueError(f"Unknown record type: {variant}") from None

        fields.setdefault("timestamp", to_iso8601(self.clock()))
        fields.setdefault("host", self.host)
        fields.setdefault("action", self.action)
        fields.setdefault("copilot_action", True)
        fields.setdefault("item", variant)
        return record_type(**fields)

    def line(self, variant: str, **fields) -> str:
        return to_line(self.build(variant, **fields))
