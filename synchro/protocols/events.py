# synchro/protocols/events.py
"""
Calendar event value handed to the matching core by a calendar source.

Only `uid` takes part in matching; title/start/location are carried
verbatim so matched events can be displayed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class CalendarEvent:
    """Immutable calendar event."""
    uid: str
    title: str
    start: str                       # ISO-8601 timestamp as supplied by the feed
    location: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.uid, str) or not self.uid:
            raise ValueError("CalendarEvent.uid must be a non-empty string")

    @property
    def identifier(self) -> str:
        return self.uid

    def to_dict(self) -> Dict[str, Any]:
        data = {"uid": self.uid, "title": self.title, "start": self.start}
        if self.location is not None:
            data["location"] = self.location
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CalendarEvent:
        """Build from a feed dict; accepts "uid" or "identifier"."""
        uid = data.get("uid", data.get("identifier"))
        return cls(
            uid=uid,
            title=data.get("title", ""),
            start=data.get("start", ""),
            location=data.get("location"),
        )
