"""Speech-to-text for detected speech regions via an offline recognizer."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Iterator, Protocol

from gensrt_app._types import Cue, SpeechRegion

logger = logging.getLogger(__name__)


class RecognitionError(Exception):
    """Recognizer failed while decoding one region."""

    pass


class OfflineEngine(Protocol):
    """The subset of sherpa-onnx ``OfflineRecognizer`` the adapter uses."""

    def create_stream(self): ...

    def decode_stream(self, stream) -> None: ...


class RecognitionAdapter:
    """Turns speech regions into cues.

    Each region gets its own transient recognizer stream, which is released
    before the next region whatever the outcome. Decoding runs in a thread
    pool executor to keep the event loop responsive.
    """

    def __init__(
        self,
        engine: OfflineEngine,
        sample_rate: int = 16000,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize adapter.

        Args:
            engine: Offline recognizer (sherpa-onnx compatible)
            sample_rate: Sample rate of region samples in Hz
            executor: Optional ThreadPoolExecutor for decode calls
        """
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self._engine = engine
        self.sample_rate = sample_rate
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._executor_owned = executor is None
        self.streams_opened = 0
        self.streams_released = 0

    @contextmanager
    def _transient_stream(self) -> Iterator[list]:
        """Yield a one-slot holder for a fresh stream, emptied on exit.

        Callers index the holder instead of binding the stream, so clearing
        it drops the last reference to the native stream.
        """
        holder = [self._engine.create_stream()]
        self.streams_opened += 1
        try:
            yield holder
        finally:
            holder.clear()
            self.streams_released += 1

    def _recognize_sync(self, region: SpeechRegion) -> str:
        """Decode one region (runs in thread pool)."""
        if self._engine is None:
            raise RecognitionError("Recognizer disposed")
        try:
            with self._transient_stream() as holder:
                holder[0].accept_waveform(self.sample_rate, region.samples)
                self._engine.decode_stream(holder[0])
                result = holder[0].result
            return (getattr(result, "text", "") or "").strip()
        except Exception as e:
            raise RecognitionError(
                f"Recognition failed for region at sample {region.start_sample}: {e}"
            ) from e

    async def recognize(self, region: SpeechRegion) -> Cue | None:
        """Recognize one region.

        Returns:
            Cue for the region, or None when no text was recognized

        Raises:
            RecognitionError: If the engine fails on this region
        """
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(self.executor, self._recognize_sync, region)
        if not text:
            logger.debug("Region at sample %d produced no text", region.start_sample)
            return None
        return Cue(
            start=region.start_sample / self.sample_rate,
            duration=len(region.samples) / self.sample_rate,
            text=text,
        )

    def dispose(self) -> None:
        """Release the engine and the owned executor."""
        self._engine = None
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=True)
        logger.debug(
            "Recognizer disposed (%d streams opened, %d released)",
            self.streams_opened,
            self.streams_released,
        )
