import logging
import sys
import uuid
from contextvars import ContextVar

_run_id: ContextVar[str] = ContextVar("run_id", default="-")
_theater: ContextVar[str] = ContextVar("theater", default="-")


def new_run_id() -> str:
    return uuid.uuid4().hex[:8]


def set_run_id(run_id: str) -> None:
    _run_id.set(run_id)


def set_theater(name: str) -> None:
    _theater.set(name)


def truncate(value: str, length: int = 10) -> str:
    return value if len(value) <= length else value[:length] + "..."


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _run_id.get()
        record.theater = _theater.get()
        return True


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s [%(run_id)s] [%(theater)s] %(name)s: %(message)s"
        )
    )
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
