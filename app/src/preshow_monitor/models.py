from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

@dataclass(frozen=True)
class Automation:
    id: str
    time_text: str
    start_seconds: int | None
    title: str
    kind: str = ""
    frame_offset: int | None = None

@dataclass(frozen=True)
class PlaylistItem:
    id: str
    classes: tuple[str, ...]
    time_text: str
    start_seconds: int | None
    title: str
    cpl_name: str = ""
    cpl_id: str = ""
    duration_seconds: int | None = None
    automations: tuple[Automation, ...] = ()

@dataclass(frozen=True)
class PlaylistCacheEntry:
    show_title: str
    items: list[PlaylistItem]
    fetched_at: float    # epoch seconds

TimerKind = Literal["rail", "film"]

@dataclass(frozen=True)
class TimerDescriptor:
    kind: TimerKind
    label: str
    seconds_remaining: int
    target_time: str | None = None    # HH:MM, local to the theater

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "label": self.label,
            "secondsRemaining": self.seconds_remaining,
            "targetTime": self.target_time,
        }

@dataclass(frozen=True)
class ScheduledShow:
    title: str
    start: datetime
    end: datetime

@dataclass(frozen=True)
class NextShow:
    title: str
    start: str       # ISO timestamp
    end: str

@dataclass(frozen=True)
class ShowStatus:
    spl_title: str | None
    cpl_title: str | None
    position_seconds: int | None
    duration_seconds: int | None
    state: str
    next_show: NextShow | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_running(self) -> bool:
        return self.state in ("Play", "Pause")

    def to_dict(self) -> dict:
        return {
            "splTitle": self.spl_title,
            "cplTitle": self.cpl_title,
            "splPosition": self.position_seconds,
            "splDuration": self.duration_seconds,
            "stateInfo": self.state,
            "nextShow": self.next_show.__dict__ if self.next_show else None,
        }

@dataclass(frozen=True)
class MacroControl:
    id: str
    name: str
    display: str

@dataclass(frozen=True)
class MacroGroup:
    group: str
    controls: list[MacroControl] = field(default_factory=list)
