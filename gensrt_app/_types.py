"""Shared types and dataclasses for cross-module use."""

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import numpy as np


class Disposable(Protocol):
    """Resource that must be released explicitly once its owner is done."""

    def dispose(self) -> None: ...


@dataclass
class SpeechRegion:
    """A contiguous span of samples the detector judged to be speech."""

    start_sample: int
    samples: np.ndarray


@dataclass
class Cue:
    """A timed text entry destined for the subtitle file."""

    start: float
    duration: float
    text: str

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass
class ProgressSample:
    """Derived progress telemetry for one running job."""

    processed_seconds: float
    total_seconds: float
    elapsed_seconds: float
    speed: float

    @property
    def remaining_seconds(self) -> float:
        if self.speed <= 0 or self.total_seconds <= 0:
            return 0.0
        return max(0.0, (self.total_seconds - self.processed_seconds) / self.speed)

    @property
    def percent(self) -> int:
        if self.total_seconds <= 0:
            return 0
        return min(100, round(self.processed_seconds / self.total_seconds * 100))


class JobKind(Enum):
    """Kind of work a job performs; each kind has its own queue."""

    TRANSCRIPTION = "transcription"
    TRANSLATION = "translation"


class JobStatus(Enum):
    """Job lifecycle state."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED)


_job_ids = itertools.count(1)


@dataclass
class Job:
    """One unit of work tracked through the status state machine."""

    kind: JobKind
    source: Path
    output_path: Path
    options: dict = field(default_factory=dict)
    id: int = field(default_factory=lambda: next(_job_ids))
    status: JobStatus = JobStatus.PENDING
    created_at: float = field(default_factory=time.time)
    error: str | None = None

    @property
    def filename(self) -> str:
        return self.source.name

    def snapshot(self) -> dict:
        """Return a JSON-ready view of the job."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "filename": self.filename,
            "status": self.status.value,
            "created_at": self.created_at,
            "error": self.error,
        }
