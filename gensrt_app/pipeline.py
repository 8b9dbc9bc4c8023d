"""One-file transcription pipeline from media to SRT."""

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from gensrt_app._types import Cue
from gensrt_app.buffer import CircularBuffer
from gensrt_app.config import Config
from gensrt_app.decoder import DecodeProcess, PcmConverter, build_ffmpeg_command, probe_duration
from gensrt_app.detector import SegmentDetector, build_silero_detector
from gensrt_app.models import ModelVariant
from gensrt_app.recognizer import RecognitionAdapter, RecognitionError
from gensrt_app.srt import save_srt

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, float], None]
ProcessCallback = Callable[[DecodeProcess], None]


class JobCancelledError(Exception):
    """Job stopped on request; a controlled terminal state, not a failure."""

    pass


class CancellationToken:
    """Cooperative cancellation flag checked at chunk, window and region granularity."""

    def __init__(self):
        """Initialize cancellation token in non-cancelled state."""
        self._cancelled = False

    def cancel(self) -> None:
        """Mark token as cancelled."""
        self._cancelled = True

    def is_cancelled(self) -> bool:
        """Check if token is cancelled."""
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        """Raise JobCancelledError if cancellation was requested."""
        if self._cancelled:
            raise JobCancelledError("Job cancelled")

    def reset(self) -> None:
        """Reset token to non-cancelled state."""
        self._cancelled = False


@dataclass
class TranscriptionResult:
    """Outcome of one completed transcription."""

    output_path: Path
    cues: list[Cue]
    regions: int
    duration: float
    elapsed: float


class TranscriptionPipeline:
    """Runs decode -> buffer -> VAD -> recognition -> merge -> SRT for one file.

    The same pipeline instance serves every entry point. Per-job resources
    (buffer, detector, recognizer, decode process) are created for each call
    and released on every exit path, cancellation included.
    """

    def __init__(
        self,
        config: Config,
        model: ModelVariant,
        *,
        detector_factory: Callable[[], SegmentDetector] | None = None,
        recognizer_factory: Callable[[], RecognitionAdapter] | None = None,
        decoder_factory: Callable[[Path], DecodeProcess] | None = None,
        duration_probe: Callable[[Path], Awaitable[float]] | None = None,
    ):
        self.config = config
        self.model = model
        self._detector_factory = detector_factory or self._build_detector
        self._recognizer_factory = recognizer_factory or self._build_recognizer
        self._decoder_factory = decoder_factory or self._build_decoder
        self._duration_probe = duration_probe or self._probe

    def _build_detector(self) -> SegmentDetector:
        return build_silero_detector(
            self.model, self.config.vad, self.config.audio, debug=self.config.model.debug
        )

    def _build_recognizer(self) -> RecognitionAdapter:
        engine = self.model.build_recognizer(self.config.model, self.config.audio)
        return RecognitionAdapter(engine, sample_rate=self.config.audio.sample_rate)

    def _build_decoder(self, source: Path) -> DecodeProcess:
        cmd = build_ffmpeg_command(
            source,
            sample_rate=self.config.audio.sample_rate,
            ffmpeg=self.config.decoder.ffmpeg,
        )
        return DecodeProcess(cmd, chunk_size=self.config.decoder.chunk_size)

    async def _probe(self, source: Path) -> float:
        return await probe_duration(source, self.config.decoder.ffprobe)

    async def transcribe(
        self,
        source: Path,
        output_path: Path,
        *,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        on_process: ProcessCallback | None = None,
    ) -> TranscriptionResult:
        """Transcribe ``source`` into an SRT file at ``output_path``.

        Args:
            source: Media file to decode
            output_path: Destination SRT path
            token: Cancellation token checked per chunk, window and region
            on_progress: Called with (processed_seconds, total_seconds) per chunk
            on_process: Called once with the running decode process

        Returns:
            TranscriptionResult describing the written file

        Raises:
            JobCancelledError: If cancelled; nothing is written
            SpawnError: If the decoder cannot start
            DecodeProcessError: If the decoder exits unsuccessfully
            FileSystemError: If the SRT cannot be written
        """
        token = token or CancellationToken()
        source = Path(source)
        sample_rate = self.config.audio.sample_rate
        start_time = time.monotonic()

        logger.info("Starting: %s", source.name)
        total = await self._duration_probe(source)
        token.raise_if_cancelled()

        loop = asyncio.get_running_loop()
        async with AsyncExitStack() as stack:
            buffer = CircularBuffer(self.config.buffer_capacity)
            stack.callback(buffer.dispose)
            detector = await loop.run_in_executor(None, self._detector_factory)
            stack.callback(detector.dispose)
            recognizer = await loop.run_in_executor(None, self._recognizer_factory)
            stack.callback(recognizer.dispose)

            process = self._decoder_factory(source)
            await stack.enter_async_context(process)
            if on_process is not None:
                on_process(process)

            converter = PcmConverter()
            processed = 0.0
            cues: list[Cue] = []
            regions = 0
            async for chunk in process.chunks():
                token.raise_if_cancelled()
                samples = converter.convert(chunk)
                detector.push_samples(buffer, samples, token)
                regions += await self._recognize_regions(detector, recognizer, token, cues)
                processed += len(samples) / sample_rate
                if on_progress is not None:
                    on_progress(processed, total)

            token.raise_if_cancelled()
            await process.wait()
            token.raise_if_cancelled()
            await process.check_returncode()

            logger.info("Finalizing transcription of %s", source.name)
            detector.flush()
            regions += await self._recognize_regions(detector, recognizer, token, cues)
            token.raise_if_cancelled()

            merged = save_srt(
                cues,
                output_path,
                max_duration=self.config.merge.max_duration,
                max_pause=self.config.merge.max_pause,
            )

        elapsed = time.monotonic() - start_time
        duration = total or processed
        logger.info(
            "Done: %s (regions=%d, cues=%d, duration=%.2fs, time=%.2fs, speed=%s)",
            output_path,
            regions,
            len(merged),
            duration,
            elapsed,
            f"{duration / elapsed:.2f}x" if elapsed > 0 and duration > 0 else "N/A",
        )
        return TranscriptionResult(
            output_path=Path(output_path),
            cues=merged,
            regions=regions,
            duration=duration,
            elapsed=elapsed,
        )

    async def _recognize_regions(
        self,
        detector: SegmentDetector,
        recognizer: RecognitionAdapter,
        token: CancellationToken,
        cues: list[Cue],
    ) -> int:
        """Recognize queued regions in detection order, appending to ``cues``.

        Failed regions are dropped. Returns the number of regions dequeued.
        """
        regions = 0
        for region in detector.drain():
            token.raise_if_cancelled()
            regions += 1
            try:
                cue = await recognizer.recognize(region)
            except RecognitionError as e:
                logger.warning("Dropping region: %s", e)
                cue = None
            # cancellation may arrive while the executor is decoding
            token.raise_if_cancelled()
            if cue is not None:
                cues.append(cue)
        return regions
