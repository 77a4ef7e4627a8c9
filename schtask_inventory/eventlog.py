import logging
import subprocess
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

OPERATIONAL_CHANNEL = "Microsoft-Windows-TaskScheduler/Operational"

# started, start failed, completed, action start failed, registered,
# updated, deleted, action started, action completed
WATCHED_EVENT_IDS = (100, 101, 102, 103, 106, 140, 141, 200, 201)

LOOKBACK = timedelta(days=7)

# EVT_CHANNEL_CONFIG_PROPERTY_ID.EvtChannelConfigEnabled
EVT_CHANNEL_CONFIG_ENABLED = 0

EVENT_NS = {"e": "http://schemas.microsoft.com/win/2004/08/events/event"}


@dataclass(frozen=True)
class HistoryEvent:
    time_created: datetime
    event_id: int
    task_full_name: str | None = None
    result: str | None = None


def build_query(event_ids, since: timedelta) -> str:
    """XPath filter on event IDs and a window ending now."""
    ids = " or ".join(f"EventID={event_id}" for event_id in event_ids)
    window_ms = int(since.total_seconds() * 1000)
    return f"*[System[({ids}) and TimeCreated[timediff(@SystemTime) <= {window_ms}]]]"


def parse_system_time(value: str) -> datetime:
    # SystemTime carries 7 fractional digits, which strptime cannot take
    return datetime.strptime(value[:19], "%Y-%m-%dT%H:%M:%S").replace(
        tzinfo=timezone.utc
    )


def parse_event_xml(xml_text: str) -> HistoryEvent:
    root = ET.fromstring(xml_text)
    system = root.find("e:System", EVENT_NS)
    event_id = int(system.find("e:EventID", EVENT_NS).text)
    time_created = parse_system_time(
        system.find("e:TimeCreated", EVENT_NS).get("SystemTime")
    )

    data = [node.text for node in root.findall("e:EventData/e:Data", EVENT_NS)]
    return HistoryEvent(
        time_created=time_created,
        event_id=event_id,
        task_full_name=data[0] if len(data) > 0 else None,
        result=data[1] if len(data) > 1 else None,
    )


class OperationalLog:
    """Task Scheduler operational channel, read through the Evt* API."""

    def __init__(self, evtlog=None, channel=OPERATIONAL_CHANNEL, run=subprocess.run):
        self.evtlog = evtlog
        self.channel = channel
        self.run = run

    @property
    def api(self):
        if self.evtlog is None:
            import win32evtlog

            self.evtlog = win32evtlog
        return self.evtlog

    def is_enabled(self) -> bool:
        config = self.api.EvtOpenChannelConfig(self.channel)
        value, _ = self.api.EvtGetChannelConfigProperty(
            config, EVT_CHANNEL_CONFIG_ENABLED
        )
        return bool(value)

    def ensure_enabled(self) -> None:
        """Turn the channel on when it is off; failures only warn."""
        try:
            if self.is_enabled():
                return
            logger.info("Enabling event log %s", self.channel)
            self.run(
                ["wevtutil", "set-log", self.channel, "/enabled:true"],
                check=True,
                capture_output=True,
            )
        except Exception as e:
            logger.warning("Could not check or enable %s: %s", self.channel, e)

    def query_events(self, event_ids=WATCHED_EVENT_IDS, since=LOOKBACK, batch_size=100):
        """Return matching events from the window, newest first.

        Query failures (channel disabled, access denied) yield an empty list.
        """
        api = self.api
        try:
            result_set = api.EvtQuery(
                self.channel,
                api.EvtQueryChannelPath | api.EvtQueryReverseDirection,
                build_query(event_ids, since),
            )
            results = []
            while True:
                handles = api.EvtNext(result_set, batch_size)
                if not handles:
                    break
                for handle in handles:
                    event = self.render(handle)
                    if event is not None:
                        results.append(event)
        except Exception as e:
            logger.warning("Could not query %s: %s", self.channel, e)
            return []

        logger.info("Loaded %d events from %s", len(results), self.channel)
        return results

    def render(self, handle) -> HistoryEvent | None:
        try:
            return parse_event_xml(self.api.EvtRender(handle, self.api.EvtRenderEventXml))
        except Exception as e:
            logger.debug("Skipping unreadable event: %s", e)
            return None
