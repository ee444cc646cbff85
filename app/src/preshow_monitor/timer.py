import re
from typing import Sequence

from .models import Automation, PlaylistItem, TimerDescriptor

PRESHOW_WINDOW_SECONDS = 15 * 60

# Underscore counts as a separator so MOVIE_FTR_2K matches.
_SHR_FTR_RE = re.compile(r"(?:^|[^A-Za-z0-9])(SHR|FTR)(?:[^A-Za-z0-9]|$)", re.IGNORECASE)
_RAIL_RE = re.compile(r"rail", re.IGNORECASE)

RAIL_LABEL = "Rails dans"
FILM_LABEL = "Film dans"


def is_feature_or_short(item: PlaylistItem) -> bool:
    haystack = f"{item.cpl_name} {item.title}".strip()
    lowered = {c.lower() for c in item.classes}
    return bool(_SHR_FTR_RE.search(haystack)) or "feature" in lowered or "short" in lowered


def _in_window(delta: float | None) -> bool:
    return delta is not None and 0 < delta <= PRESHOW_WINDOW_SECONDS


def last_rail_cue(item: PlaylistItem) -> Automation | None:
    """Latest rail automation of an item: the cue nearest the actual presentation start."""
    rails = sorted(
        (a for a in item.automations if a.start_seconds is not None and _RAIL_RE.search(a.title or "")),
        key=lambda a: a.start_seconds,
    )
    return rails[-1] if rails else None


def compute_timer(
    items: Sequence[PlaylistItem] | None, position_seconds: float | None
) -> TimerDescriptor | None:
    """Pre-show countdown for the next rail cue or feature start, within 15 minutes.

    Rail cues win over the film start when both fall inside the window. Rail
    cues are taken from the last feature/short of the show, film start from
    the first one.
    """
    if not items or position_seconds is None:
        return None

    candidates = sorted(
        (it for it in items if it.start_seconds is not None and is_feature_or_short(it)),
        key=lambda it: it.start_seconds,
    )
    if not candidates:
        return None

    film_delta = candidates[0].start_seconds - position_seconds
    rail = last_rail_cue(candidates[-1])
    rail_delta = rail.start_seconds - position_seconds if rail else None

    if _in_window(rail_delta):
        return TimerDescriptor(kind="rail", label=RAIL_LABEL, seconds_remaining=round(rail_delta))
    if _in_window(film_delta):
        return TimerDescriptor(kind="film", label=FILM_LABEL, seconds_remaining=round(film_delta))
    return None
