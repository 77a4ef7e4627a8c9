HISTORY_PER_TASK = 5


def match_history(events, full_name: str, limit: int = HISTORY_PER_TASK):
    """Return the newest ``limit`` events whose task name is ``full_name``.

    Names are compared exactly as the event log and scheduler report them.
    """
    matches = [event for event in events if event.task_full_name == full_name]
    matches.sort(key=lambda event: event.time_created, reverse=True)
    return matches[:limit]
