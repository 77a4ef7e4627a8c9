import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)

TASK_ENUM_HIDDEN = 1

TASK_STATE = {0: "Unknown", 1: "Disabled", 2: "Queued", 3: "Ready", 4: "Running"}

RUN_LEVEL = {0: "Limited", 1: "Highest"}


class TriggerKind(str, Enum):
    EVENT = "Event"
    ONCE = "Once"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    MONTHLY_DOW = "MonthlyDOW"
    IDLE = "Idle"
    REGISTRATION = "Registration"
    BOOT = "Boot"
    LOGON = "Logon"
    SESSION_STATE_CHANGE = "SessionStateChange"
    CUSTOM = "Custom"
    UNKNOWN = "Unknown"


# TASK_TRIGGER_TYPE2 codes
TRIGGER_TYPES = {
    0: ("EventTrigger", TriggerKind.EVENT),
    1: ("TimeTrigger", TriggerKind.ONCE),
    2: ("DailyTrigger", TriggerKind.DAILY),
    3: ("WeeklyTrigger", TriggerKind.WEEKLY),
    4: ("MonthlyTrigger", TriggerKind.MONTHLY),
    5: ("MonthlyDOWTrigger", TriggerKind.MONTHLY_DOW),
    6: ("IdleTrigger", TriggerKind.IDLE),
    7: ("RegistrationTrigger", TriggerKind.REGISTRATION),
    8: ("BootTrigger", TriggerKind.BOOT),
    9: ("LogonTrigger", TriggerKind.LOGON),
    11: ("SessionStateChangeTrigger", TriggerKind.SESSION_STATE_CHANGE),
    12: ("CustomTrigger", TriggerKind.CUSTOM),
}

DAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

MONTHS = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

WEEKS_OF_MONTH = ["first", "second", "third", "fourth"]


@dataclass(frozen=True)
class TriggerDescriptor:
    type_name: str
    kind: TriggerKind
    start: str | None = None
    schedule: str | None = None
    repetition: str | None = None
    enabled: bool = True

    def __str__(self) -> str:
        details = []
        if self.start:
            details.append(f"start {self.start}")
        if self.schedule:
            details.append(self.schedule)
        if self.repetition:
            details.append(self.repetition)
        if not self.enabled:
            details.append("disabled")

        text = self.type_name
        if details:
            text += f" ({', '.join(details)})"
        return f"{text} [{self.kind.value}]"


@dataclass(frozen=True)
class TaskInfo:
    state: str
    last_run_time: Any = None
    next_run_time: Any = None
    last_task_result: int | None = None


@dataclass(frozen=True)
class TaskSnapshot:
    task_name: str
    task_path: str
    state: str = "Unknown"
    last_run_time: Any = None
    next_run_time: Any = None
    last_task_result: int | None = None
    author: str | None = None
    run_level: str | None = None
    triggers: tuple[TriggerDescriptor, ...] = field(default_factory=tuple)
    actions: tuple[str, ...] = field(default_factory=tuple)

    @property
    def full_name(self) -> str:
        return self.task_path + self.task_name

    @property
    def triggers_text(self) -> str:
        return "; ".join(str(trigger) for trigger in self.triggers)

    @property
    def actions_text(self) -> str:
        return "; ".join(self.actions)


class TaskEntry(NamedTuple):
    """A registered task as found while walking the folder tree."""

    task_name: str
    task_path: str
    task: Any


def folder_prefix(folder_path: str) -> str:
    """Return the folder path with the trailing backslash task names hang off."""
    return folder_path if folder_path.endswith("\\") else folder_path + "\\"


def com_local_time(value):
    """Strip the UTC label pywin32 puts on VT_DATE values, which hold local time."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return value


def get_task_state_string(task_state) -> str:
    """Return a string representation of the task state."""
    return TASK_STATE.get(task_state, "Unknown")


def decode_days_of_week(days_value: int) -> str:
    return ", ".join(day for i, day in enumerate(DAYS) if days_value & (1 << i))


def decode_months(months_value: int) -> str:
    return ", ".join(
        month for i, month in enumerate(MONTHS) if months_value & (1 << i)
    )


def decode_days_of_month(days_value: int) -> str:
    days = [str(i + 1) for i in range(31) if days_value & (1 << i)]
    # bit 31 is "last day of the month"
    if days_value & (1 << 31):
        days.append("last")
    return ", ".join(days)


def decode_weeks_of_month(weeks_value: int) -> str:
    return ", ".join(
        week for i, week in enumerate(WEEKS_OF_MONTH) if weeks_value & (1 << i)
    )


_ISO_DURATION = re.compile(
    r"P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def parse_iso_duration(duration_str: str) -> timedelta | None:
    """Convert ISO 8601 duration format (like PT10M) to a timedelta.

    Years and months have no fixed length, so those durations give None.
    """
    parts = _ISO_DURATION.match(duration_str or "")
    if not parts:
        return None

    values = {key: float(value) for key, value in parts.groupdict().items() if value}
    return timedelta(**values)


def format_duration(duration_str: str) -> str:
    value = parse_iso_duration(duration_str)
    return duration_str if value is None else str(value)


def describe_repetition(trigger) -> str | None:
    repetition = trigger.Repetition
    if not repetition.Interval:
        return None
    text = f"repeat every {format_duration(repetition.Interval)}"
    if repetition.Duration:
        return f"{text} for {format_duration(repetition.Duration)}"
    return f"{text} indefinitely"


def describe_schedule(trigger, kind: TriggerKind) -> str | None:
    match kind:
        case TriggerKind.DAILY:
            return f"every {trigger.DaysInterval} day(s)"
        case TriggerKind.WEEKLY:
            return (
                f"every {trigger.WeeksInterval} week(s) on "
                f"{decode_days_of_week(trigger.DaysOfWeek)}"
            )
        case TriggerKind.MONTHLY:
            return (
                f"on day {decode_days_of_month(trigger.DaysOfMonth)} of "
                f"{decode_months(trigger.MonthsOfYear)}"
            )
        case TriggerKind.MONTHLY_DOW:
            return (
                f"on {decode_days_of_week(trigger.DaysOfWeek)} of the "
                f"{decode_weeks_of_month(trigger.WeeksOfMonth)} week of "
                f"{decode_months(trigger.MonthsOfYear)}"
            )
        case TriggerKind.LOGON if trigger.UserId:
            return f"user {trigger.UserId}"
        case _:
            return None


def describe_trigger(trigger) -> TriggerDescriptor:
    """Return a typed descriptor for one ITrigger."""
    type_name, kind = TRIGGER_TYPES.get(
        trigger.Type, (f"Trigger{trigger.Type}", TriggerKind.UNKNOWN)
    )
    if kind is TriggerKind.UNKNOWN:
        return TriggerDescriptor(type_name, kind)

    # boot and idle triggers ignore StartBoundary
    start = None
    if kind not in (TriggerKind.BOOT, TriggerKind.IDLE):
        start = trigger.StartBoundary or None

    return TriggerDescriptor(
        type_name,
        kind,
        start=start,
        schedule=describe_schedule(trigger, kind),
        repetition=describe_repetition(trigger),
        enabled=bool(trigger.Enabled),
    )


def describe_action(action) -> str:
    match action.Type:
        case 0:  # TASK_ACTION_EXEC
            if action.Arguments:
                return f"{action.Path} {action.Arguments}"
            return action.Path
        case 5:  # TASK_ACTION_COM_HANDLER
            return f"ComHandler {action.ClassId}"
        case _:
            return f"Action{action.Type}"


class TaskSchedulerService:
    """Reads registered tasks through the Task Scheduler 2.0 COM API."""

    def __init__(self, task_scheduler=None) -> None:
        self.task_scheduler = task_scheduler

    def connect(self):
        if self.task_scheduler is None:
            import win32com.client

            task_scheduler = win32com.client.Dispatch("Schedule.Service")
            task_scheduler.Connect()
            self.task_scheduler = task_scheduler
        return self.task_scheduler

    def list_tasks(self, max_tasks: int = 0) -> list[TaskEntry]:
        """Walk every folder below the root and return the registered tasks.

        An unreachable scheduler yields an empty list.
        """
        try:
            root_folder = self.connect().GetFolder("\\")
        except Exception as e:
            logger.warning("Task Scheduler unavailable, continuing without tasks: %s", e)
            return []

        task_list = []
        folders = [root_folder]
        while folders:
            folder = folders.pop(0)
            try:
                folders += list(folder.GetFolders(0))
                prefix = folder_prefix(folder.Path)
                task_list += [
                    TaskEntry(task.Name, prefix, task)
                    for task in folder.GetTasks(TASK_ENUM_HIDDEN)
                ]
            except Exception as e:
                logger.warning("Could not read task folder %s: %s", _safe_path(folder), e)

        if max_tasks and len(task_list) > max_tasks:
            logger.warning(
                "Found %d tasks, processing only the first %d (MaxTasks)",
                len(task_list),
                max_tasks,
            )
            task_list = task_list[:max_tasks]

        logger.info("Enumerated %d scheduled tasks", len(task_list))
        return task_list

    def get_task_info(self, path: str, name: str) -> TaskInfo | None:
        """Look a task up again and read its runtime state."""
        try:
            folder = self.connect().GetFolder(path.rstrip("\\") or "\\")
            task = folder.GetTask(name)
            return TaskInfo(
                state=get_task_state_string(task.State),
                last_run_time=com_local_time(task.LastRunTime),
                next_run_time=com_local_time(task.NextRunTime),
                last_task_result=_as_int(task.LastTaskResult),
            )
        except Exception as e:
            logger.warning("Could not read run info for %s%s: %s", path, name, e)
            return None

    def snapshot(self, entry: TaskEntry) -> TaskSnapshot:
        info = self.get_task_info(entry.task_path, entry.task_name)
        if info is None:
            info = TaskInfo(state=self.cached_state(entry.task) or "Unknown")

        return TaskSnapshot(
            task_name=entry.task_name,
            task_path=entry.task_path,
            state=info.state,
            last_run_time=info.last_run_time,
            next_run_time=info.next_run_time,
            last_task_result=info.last_task_result,
            author=self.author(entry.task),
            run_level=self.run_level(entry.task),
            triggers=self.triggers(entry.task),
            actions=self.actions(entry.task),
        )

    def cached_state(self, task) -> str | None:
        try:
            return get_task_state_string(task.State)
        except Exception as e:
            logger.debug("No cached state for %s: %s", _safe_path(task), e)
            return None

    def author(self, task) -> str | None:
        try:
            return task.Definition.RegistrationInfo.Author or None
        except Exception as e:
            logger.debug("No author for %s: %s", _safe_path(task), e)
            return None

    def run_level(self, task) -> str | None:
        try:
            return RUN_LEVEL.get(task.Definition.Principal.RunLevel)
        except Exception as e:
            logger.debug("No run level for %s: %s", _safe_path(task), e)
            return None

    def triggers(self, task) -> tuple[TriggerDescriptor, ...]:
        try:
            return tuple(describe_trigger(trigger) for trigger in task.Definition.Triggers)
        except Exception as e:
            logger.warning("Could not read triggers for %s: %s", _safe_path(task), e)
            return ()

    def actions(self, task) -> tuple[str, ...]:
        try:
            return tuple(describe_action(action) for action in task.Definition.Actions)
        except Exception as e:
            logger.warning("Could not read actions for %s: %s", _safe_path(task), e)
            return ()


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _safe_path(com_object) -> str:
    try:
        return str(com_object.Path)
    except Exception:
        return "<unknown>"
