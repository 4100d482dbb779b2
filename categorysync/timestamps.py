"""Timestamp parsing for job parameters and revision rows.

Revision timestamps have one-second resolution and are stored as naive UTC
datetimes. Job parameters may carry them as 14-digit wiki timestamps
(``YYYYMMDDHHMMSS``), ISO-8601 strings or datetimes.
"""

from datetime import datetime, timezone

WIKI_FORMAT = "%Y%m%d%H%M%S"


def parse_timestamp(value) -> datetime:
    """Return a naive UTC datetime truncated to whole seconds.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if len(text) == 14 and text.isdigit():
            parsed = datetime.strptime(text, WIKI_FORMAT)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError as e:
                raise ValueError(f"Unrecognized timestamp: {value!r}") from e
    else:
        raise ValueError(f"Unrecognized timestamp: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed.replace(microsecond=0)


def to_wiki_timestamp(value: datetime) -> str:
    return parse_timestamp(value).strftime(WIKI_FORMAT)
