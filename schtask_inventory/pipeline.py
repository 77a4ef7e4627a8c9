"""One snapshot run: collect tasks and history, write one NDJSON batch."""

from __future__ import annotations

import logging
import time
from datetime import timedelta

from schtask_inventory.config import Settings
from schtask_inventory.correlate import match_history
from schtask_inventory.eventlog import OPERATIONAL_CHANNEL, OperationalLog
from schtask_inventory.records import HISTORY_ACTION, RecordBuilder, to_iso8601
from schtask_inventory.scheduler import TaskSchedulerService, TaskSnapshot
from schtask_inventory.sink import write_batch

logger = logging.getLogger(__name__)

TASK_SOURCE = "Schedule.Service"


class SnapshotPipeline:
    def __init__(
        self,
        settings: Settings,
        scheduler: TaskSchedulerService | None = None,
        history: OperationalLog | None = None,
        builder: RecordBuilder | None = None,
    ) -> None:
        self.settings = settings
        self.scheduler = scheduler or TaskSchedulerService()
        self.history = history or OperationalLog()
        self.builder = builder or RecordBuilder(action=settings.action)

    @property
    def lookback(self) -> timedelta:
        return timedelta(days=self.settings.lookback_days)

    def collect(self) -> list[str]:
        """Query both sources and return the NDJSON lines of the batch."""
        self.history.ensure_enabled()

        entries = self.scheduler.list_tasks(max_tasks=self.settings.max_tasks)
        events = self.history.query_events(self.settings.event_ids, self.lookback)

        lines = self.preamble(task_count=len(entries), events_loaded=len(events))
        for entry in entries:
            snapshot = self.scheduler.snapshot(entry)
            lines.append(self.task_line(snapshot))
            lines.extend(self.history_lines(snapshot, events))
        return lines

    def preamble(self, task_count: int, events_loaded: int) -> list[str]:
        start_time = to_iso8601(self.builder.clock() - self.lookback)
        return [
            self.builder.line(
                "config",
                note=(
                    f"Scheduled tasks with up to {self.settings.history_per_task} "
                    f"operational events each from the last "
                    f"{self.settings.lookback_days} day(s)"
                ),
            ),
            self.builder.line(
                "verify_source",
                sources=[TASK_SOURCE, OPERATIONAL_CHANNEL],
                events_filter={
                    "logName": OPERATIONAL_CHANNEL,
                    "eventIds": list(self.settings.event_ids),
                    "startTime": start_time,
                },
            ),
            self.builder.line(
                "summary", task_count=task_count, events_loaded=events_loaded
            ),
        ]

    def task_line(self, snapshot: TaskSnapshot) -> str:
        return self.builder.line(
            "task",
            task_name=snapshot.task_name,
            full_name=snapshot.full_name,
            path=snapshot.task_path,
            state=snapshot.state,
            last_run_time=to_iso8601(snapshot.last_run_time),
            next_run_time=to_iso8601(snapshot.next_run_time),
            last_task_result=snapshot.last_task_result,
            author=snapshot.author,
            run_level=snapshot.run_level,
            triggers=snapshot.triggers_text,
            actions=snapshot.actions_text,
        )

    def history_lines(self, snapshot: TaskSnapshot, events) -> list[str]:
        try:
            matches = match_history(
                events, snapshot.full_name, limit=self.settings.history_per_task
            )
        except Exception as e:
            logger.warning("Could not correlate history for %s: %s", snapshot.full_name, e)
            return []

        return [
            self.builder.line(
                "history",
                action=HISTORY_ACTION,
                timestamp=to_iso8601(event.time_created),
                task_name=snapshot.task_name,
                full_name=snapshot.full_name,
                path=snapshot.task_path,
                event_id=event.event_id,
                result=event.result,
            )
            for event in matches
        ]

    def run(self) -> int:
        """Collect and write a batch; on failure write a single error record.

        Returns 0 once a batch is on disk, 1 if not even the error record could
        be written.
        """
        started = time.monotonic()
        logger.info("=== Scheduled task inventory started ===")
        output_path = self.settings.output_path
        try:
            try:
                lines = self.collect()
                written = write_batch(lines, output_path, self.settings.scratch_dir)
                logger.info("Wrote %d records to %s", len(lines), written)
            except Exception as e:
                logger.error("Run failed: %s", e, exc_info=True)
                error_line = self.builder.line("error", error=str(e))
                written = write_batch([error_line], output_path, self.settings.scratch_dir)
                logger.info("Wrote error record to %s", written)
            return 0
        except Exception as e:
            logger.error("Could not write error record to %s: %s", output_path, e)
            return 1
        finally:
            duration = time.monotonic() - started
            logger.info("=== Finished in %.2fs ===", duration)
