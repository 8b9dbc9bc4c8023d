"""Typed job-control messages sent to supervisor observers."""

import json
from dataclasses import asdict, dataclass, field
from typing import Callable, ClassVar


@dataclass
class Event:
    """Base event; ``type`` identifies the message on the wire."""

    type: ClassVar[str] = "event"

    def to_message(self) -> dict:
        """Return a JSON-ready dict with a ``type`` key."""
        return {"type": self.type, **asdict(self)}

    def to_json(self) -> str:
        return json.dumps(self.to_message(), ensure_ascii=False)


@dataclass
class StateSnapshot(Event):
    """Full state of one job queue."""

    type: ClassVar[str] = "state_update"

    kind: str
    jobs: list[dict] = field(default_factory=list)


@dataclass
class JobStarted(Event):
    type: ClassVar[str] = "job_start"

    job_id: int
    kind: str
    filename: str


@dataclass
class JobProgress(Event):
    type: ClassVar[str] = "job_progress"

    job_id: int
    kind: str
    filename: str
    percent: int
    processed_seconds: float
    total_seconds: float
    elapsed_seconds: float
    remaining_seconds: float
    speed: float


@dataclass
class JobCompleted(Event):
    type: ClassVar[str] = "job_complete"

    job_id: int
    kind: str
    filename: str
    output_path: str


@dataclass
class JobFailed(Event):
    type: ClassVar[str] = "job_error"

    job_id: int
    kind: str
    filename: str
    error: str


@dataclass
class JobCancelled(Event):
    type: ClassVar[str] = "job_cancelled"

    job_id: int
    kind: str
    filename: str


@dataclass
class CancelAllRequested(Event):
    type: ClassVar[str] = "cancel_all_request"

    kind: str


@dataclass
class CancelAllAck(Event):
    type: ClassVar[str] = "cancel_all_ack"

    kind: str
    cancelled_job_ids: list[int] = field(default_factory=list)


Observer = Callable[[Event], None]
