"""Job queues, job state machine, cancellation and progress telemetry."""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from gensrt_app._types import Job, JobKind, JobStatus, ProgressSample
from gensrt_app.decoder import DecodeProcess
from gensrt_app.events import (
    CancelAllAck,
    CancelAllRequested,
    Event,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobProgress,
    JobStarted,
    Observer,
    StateSnapshot,
)
from gensrt_app.pipeline import CancellationToken, JobCancelledError, TranscriptionPipeline
from gensrt_app.translator import SubtitleTranslator

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.CANCELLED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED},
}


class InvalidTransitionError(Exception):
    """Requested job status change is not allowed by the state machine."""

    pass


class ProgressTracker:
    """Derives progress samples and reports only when the percentage changes."""

    def __init__(self, total_seconds: float = 0.0, clock: Callable[[], float] = time.monotonic):
        self.total_seconds = total_seconds
        self._clock = clock
        self._start = clock()
        self._last_percent: int | None = None

    def update(self, processed_seconds: float, total_seconds: float | None = None) -> ProgressSample | None:
        """Compute a sample for ``processed_seconds``.

        Returns:
            The sample when its rounded percentage differs from the last
            reported one, otherwise None
        """
        if total_seconds:
            self.total_seconds = total_seconds
        elapsed = max(0.001, self._clock() - self._start)
        sample = ProgressSample(
            processed_seconds=processed_seconds,
            total_seconds=self.total_seconds,
            elapsed_seconds=elapsed,
            speed=processed_seconds / elapsed,
        )
        if sample.percent == self._last_percent:
            return None
        self._last_percent = sample.percent
        return sample


@dataclass
class _RunningJob:
    job: Job
    token: CancellationToken
    process: DecodeProcess | None = None
    task: asyncio.Task | None = None


class JobSupervisor:
    """Runs transcription and translation jobs, one at a time per kind.

    Each kind has its own FIFO queue and worker; the two kinds run
    concurrently. Every status change is broadcast to observers, and every
    job ends in exactly one of completed, error or cancelled.
    """

    def __init__(
        self,
        pipeline: TranscriptionPipeline | None = None,
        translator: SubtitleTranslator | None = None,
        *,
        kill_grace: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize supervisor.

        Args:
            pipeline: Runs transcription jobs
            translator: Runs translation jobs
            kill_grace: Seconds between SIGTERM and SIGKILL for decode processes
            clock: Monotonic clock used for progress telemetry
        """
        self.pipeline = pipeline
        self.translator = translator
        self.kill_grace = kill_grace
        self._clock = clock

        self._jobs: dict[JobKind, list[Job]] = {kind: [] for kind in JobKind}
        self._queues: dict[JobKind, asyncio.Queue] = {kind: asyncio.Queue() for kind in JobKind}
        self._cancel_all_flags: dict[JobKind, bool] = {kind: False for kind in JobKind}
        self._running: dict[JobKind, _RunningJob | None] = {kind: None for kind in JobKind}
        self._workers: dict[JobKind, asyncio.Task] = {}
        self._observers: list[Observer] = []
        self._closed = False

        logger.info("JobSupervisor initialized (kill_grace=%.1fs)", kill_grace)

    # Observers

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _emit(self, event: Event) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.warning("Observer %r failed on %s: %s", observer, event.type, e)

    def _emit_snapshot(self, kind: JobKind) -> None:
        self._emit(StateSnapshot(kind=kind.value, jobs=[job.snapshot() for job in self._jobs[kind]]))

    def snapshot(self, kind: JobKind) -> StateSnapshot:
        """Current state of one queue."""
        return StateSnapshot(kind=kind.value, jobs=[job.snapshot() for job in self._jobs[kind]])

    # Queue access

    def jobs(self, kind: JobKind) -> list[Job]:
        return list(self._jobs[kind])

    def get_job(self, job_id: int) -> Job | None:
        for jobs in self._jobs.values():
            for job in jobs:
                if job.id == job_id:
                    return job
        return None

    def is_cancel_requested(self, kind: JobKind) -> bool:
        return self._cancel_all_flags[kind]

    def submit_transcription(self, source: Path, output_path: Path, model: str | None = None) -> Job:
        """Queue a media file for transcription."""
        return self._submit(
            Job(
                kind=JobKind.TRANSCRIPTION,
                source=Path(source),
                output_path=Path(output_path),
                options={"model": model} if model else {},
            )
        )

    def submit_translation(
        self,
        source: Path,
        output_path: Path,
        source_lang: str,
        target_lang: str,
    ) -> Job:
        """Queue a subtitle file for translation."""
        return self._submit(
            Job(
                kind=JobKind.TRANSLATION,
                source=Path(source),
                output_path=Path(output_path),
                options={"source_lang": source_lang, "target_lang": target_lang},
            )
        )

    def _submit(self, job: Job) -> Job:
        if self._closed:
            raise RuntimeError("Supervisor is shut down")
        self._jobs[job.kind].append(job)
        self._queues[job.kind].put_nowait(job)
        logger.info("Queued %s job %d: %s", job.kind.value, job.id, job.filename)
        self._emit_snapshot(job.kind)
        return job

    def clear_finished(self, kind: JobKind) -> int:
        """Drop finished jobs from a queue's history; returns how many were dropped."""
        before = len(self._jobs[kind])
        self._jobs[kind] = [job for job in self._jobs[kind] if not job.status.is_terminal]
        self._emit_snapshot(kind)
        return before - len(self._jobs[kind])

    # State machine

    def _transition(self, job: Job, status: JobStatus) -> None:
        allowed = _TRANSITIONS.get(job.status, set())
        if status not in allowed:
            raise InvalidTransitionError(
                f"Job {job.id}: {job.status.value} -> {status.value} not allowed"
            )
        logger.info(
            "Job %d (%s) state transition: %s -> %s",
            job.id,
            job.filename,
            job.status.value.upper(),
            status.value.upper(),
        )
        job.status = status

    def _finish(self, job: Job, status: JobStatus, error: str | None = None) -> None:
        self._transition(job, status)
        kind = job.kind.value
        if status is JobStatus.COMPLETED:
            self._emit(JobCompleted(job_id=job.id, kind=kind, filename=job.filename, output_path=str(job.output_path)))
        elif status is JobStatus.ERROR:
            job.error = error
            self._emit(JobFailed(job_id=job.id, kind=kind, filename=job.filename, error=error or ""))
        else:
            self._emit(JobCancelled(job_id=job.id, kind=kind, filename=job.filename))
        self._emit_snapshot(job.kind)

    # Lifecycle

    def start(self) -> None:
        """Start one worker per job kind."""
        if self._closed:
            raise RuntimeError("Supervisor is shut down")
        for kind in JobKind:
            if kind not in self._workers or self._workers[kind].done():
                self._workers[kind] = asyncio.create_task(self._worker(kind), name=f"{kind.value}-worker")
        logger.debug("Supervisor workers started")

    async def join(self) -> None:
        """Wait until both queues are drained."""
        await asyncio.gather(*(queue.join() for queue in self._queues.values()))

    async def shutdown(self) -> None:
        """Cancel everything outstanding and stop the workers."""
        logger.info("Supervisor shutdown starting")
        self._closed = True
        outstanding = [
            kind
            for kind in JobKind
            if self._running[kind] is not None
            or any(job.status is JobStatus.PENDING for job in self._jobs[kind])
        ]
        for kind in outstanding:
            await self.cancel_all(kind)
        for task in self._workers.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        logger.info("Supervisor shutdown complete")

    async def _worker(self, kind: JobKind) -> None:
        queue = self._queues[kind]
        while True:
            job = await queue.get()
            try:
                if job.status is not JobStatus.PENDING:
                    logger.debug("Skipping job %d in %s state", job.id, job.status.value)
                    continue
                if self._cancel_all_flags[kind]:
                    self._finish(job, JobStatus.CANCELLED)
                    continue
                await self._run_job(job)
            finally:
                queue.task_done()

    async def _run_job(self, job: Job) -> None:
        running = _RunningJob(job=job, token=CancellationToken())
        self._running[job.kind] = running
        self._transition(job, JobStatus.PROCESSING)
        self._emit(JobStarted(job_id=job.id, kind=job.kind.value, filename=job.filename))
        self._emit_snapshot(job.kind)

        running.task = asyncio.create_task(self._execute(running))
        try:
            await running.task
        except JobCancelledError:
            logger.info("Job %d cancelled: %s", job.id, job.filename)
            self._finish(job, JobStatus.CANCELLED)
        except asyncio.CancelledError:
            self._finish(job, JobStatus.CANCELLED)
            if self._closed or not running.token.is_cancelled():
                raise
        except Exception as e:
            logger.error("Job %d failed (%s): %s", job.id, type(e).__name__, e)
            self._finish(job, JobStatus.ERROR, error=f"{type(e).__name__}: {e}")
        else:
            self._finish(job, JobStatus.COMPLETED)
        finally:
            running.process = None
            self._running[job.kind] = None

    async def _execute(self, running: _RunningJob) -> None:
        job = running.job
        if job.kind is JobKind.TRANSCRIPTION:
            if self.pipeline is None:
                raise RuntimeError("No transcription pipeline configured")
            tracker = ProgressTracker(clock=self._clock)

            def on_process(process: DecodeProcess) -> None:
                running.process = process

            def on_progress(processed: float, total: float) -> None:
                sample = tracker.update(processed, total)
                if sample is not None:
                    self._emit_progress(job, sample)

            await self.pipeline.transcribe(
                job.source,
                job.output_path,
                token=running.token,
                on_progress=on_progress,
                on_process=on_process,
            )
        else:
            if self.translator is None:
                raise RuntimeError("No translator configured")
            await self.translator.translate_file(
                job.source,
                job.output_path,
                job.options["source_lang"],
                job.options["target_lang"],
                token=running.token,
            )

    def _emit_progress(self, job: Job, sample: ProgressSample) -> None:
        remaining = 0.0 if sample.percent >= 100 else sample.remaining_seconds
        self._emit(
            JobProgress(
                job_id=job.id,
                kind=job.kind.value,
                filename=job.filename,
                percent=sample.percent,
                processed_seconds=round(sample.processed_seconds, 2),
                total_seconds=round(sample.total_seconds, 2),
                elapsed_seconds=round(sample.elapsed_seconds, 2),
                remaining_seconds=round(remaining, 2),
                speed=round(sample.speed, 2),
            )
        )

    # Cancellation

    async def _stop_running(self, running: _RunningJob) -> None:
        running.token.cancel()
        if running.process is not None:
            await running.process.terminate(self.kill_grace)
        if running.job.kind is JobKind.TRANSLATION and running.task is not None:
            running.task.cancel()

    async def cancel_job(self, job_id: int) -> bool:
        """Cancel one job; the queue continues with the next one.

        Returns:
            True if the job was pending or running, False otherwise
        """
        job = self.get_job(job_id)
        if job is None or job.status.is_terminal:
            return False

        if job.status is JobStatus.PENDING:
            self._finish(job, JobStatus.CANCELLED)
            return True

        running = self._running[job.kind]
        if running is None or running.job is not job:
            return False
        logger.info("Cancelling running job %d: %s", job.id, job.filename)
        await self._stop_running(running)
        return True

    async def cancel_all(self, kind: JobKind | None = None) -> list[int]:
        """Cancel the running job and every pending job of a kind (or both kinds).

        The kind's cancel flag stays set until ``reset_cancellation``; jobs
        dequeued meanwhile are cancelled without running.

        Returns:
            Ids of the jobs that were cancelled
        """
        kinds = [kind] if kind is not None else list(JobKind)
        cancelled: list[int] = []
        for k in kinds:
            self._emit(CancelAllRequested(kind=k.value))
            self._cancel_all_flags[k] = True

            ids = []
            for job in self._jobs[k]:
                if job.status is JobStatus.PENDING:
                    self._finish(job, JobStatus.CANCELLED)
                    ids.append(job.id)

            running = self._running[k]
            if running is not None:
                logger.info("Stopping running %s job %d", k.value, running.job.id)
                ids.append(running.job.id)
                await self._stop_running(running)

            logger.info("Cancel-all for %s: %d job(s) cancelled", k.value, len(ids))
            self._emit(CancelAllAck(kind=k.value, cancelled_job_ids=ids))
            cancelled.extend(ids)
        return cancelled

    def reset_cancellation(self, kind: JobKind | None = None) -> None:
        """Clear the cancel-all flag so new jobs run again."""
        for k in [kind] if kind is not None else list(JobKind):
            self._cancel_all_flags[k] = False
