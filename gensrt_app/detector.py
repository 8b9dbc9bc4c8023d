"""Voice-activity segmentation of a sample stream into speech regions."""

import logging
from typing import Iterator, Protocol

import numpy as np

from gensrt_app._types import SpeechRegion
from gensrt_app.buffer import CircularBuffer
from gensrt_app.config import AudioConfig, VadConfig
from gensrt_app.models import ModelVariant

logger = logging.getLogger(__name__)

WINDOW_SIZE = 512


class CancellationCheck(Protocol):
    def raise_if_cancelled(self) -> None: ...


class VoiceActivityEngine(Protocol):
    """The subset of sherpa-onnx ``VoiceActivityDetector`` the adapter uses."""

    def accept_waveform(self, samples) -> None: ...

    def flush(self) -> None: ...

    def empty(self) -> bool: ...

    @property
    def front(self): ...

    def pop(self) -> None: ...


class SegmentDetector:
    """Feeds fixed-size windows to a VAD engine and drains its region queue."""

    def __init__(self, engine: VoiceActivityEngine, window_size: int = WINDOW_SIZE):
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        self._engine = engine
        self.window_size = window_size
        self.windows_fed = 0
        self._flushed = False

    def feed(self, buffer: CircularBuffer, token: CancellationCheck | None = None) -> int:
        """Push every whole window held by ``buffer`` into the engine.

        Runs to quiescence: afterwards fewer than ``window_size`` samples
        remain buffered. The token is checked before every window.

        Returns:
            Number of windows fed
        """
        fed = 0
        while buffer.size >= self.window_size:
            if token is not None:
                token.raise_if_cancelled()
            window = buffer.get(buffer.head, self.window_size)
            buffer.pop(self.window_size)
            self._engine.accept_waveform(window)
            fed += 1
        self.windows_fed += fed
        return fed

    def push_samples(
        self,
        buffer: CircularBuffer,
        samples: np.ndarray,
        token: CancellationCheck | None = None,
    ) -> None:
        """Push a decoded chunk, windowing between slices so it never overflows.

        A chunk larger than the buffer's free space is split; each slice is
        followed by ``feed``, which frees all but the sub-window remainder.
        """
        if buffer.capacity < self.window_size:
            raise ValueError(
                f"Buffer capacity {buffer.capacity} smaller than window {self.window_size}"
            )
        offset = 0
        while offset < len(samples):
            take = min(buffer.free, len(samples) - offset)
            buffer.push(samples[offset:offset + take])
            offset += take
            self.feed(buffer, token)

    def flush(self) -> None:
        """Force emission of a trailing in-progress region. Called once at end of stream."""
        if self._flushed:
            logger.debug("Detector already flushed, ignoring")
            return
        self._engine.flush()
        self._flushed = True

    def drain(self) -> Iterator[SpeechRegion]:
        """Yield queued speech regions in detection order until the queue is empty."""
        while not self._engine.empty():
            segment = self._engine.front
            region = SpeechRegion(
                start_sample=int(segment.start),
                samples=np.asarray(segment.samples, dtype=np.float32),
            )
            self._engine.pop()
            yield region

    def dispose(self) -> None:
        """Release the engine."""
        self._engine = None
        logger.debug("Segment detector disposed after %d windows", self.windows_fed)


def build_silero_detector(
    model: ModelVariant,
    vad_cfg: VadConfig,
    audio_cfg: AudioConfig,
    debug: bool = False,
) -> SegmentDetector:
    """Create a detector backed by sherpa-onnx Silero VAD from the model directory."""
    import sherpa_onnx

    config = sherpa_onnx.VadModelConfig()
    config.silero_vad.model = str(model.vad_model_path())
    config.silero_vad.threshold = vad_cfg.threshold
    config.silero_vad.min_speech_duration = vad_cfg.min_speech_duration
    config.silero_vad.min_silence_duration = vad_cfg.min_silence_duration
    config.silero_vad.window_size = vad_cfg.window_size
    config.sample_rate = audio_cfg.sample_rate
    config.num_threads = vad_cfg.num_threads
    config.provider = vad_cfg.provider
    config.debug = debug

    engine = sherpa_onnx.VoiceActivityDetector(
        config, buffer_size_in_seconds=vad_cfg.buffer_seconds
    )
    logger.debug("Silero VAD created from %s", model.vad_model_path())
    return SegmentDetector(engine, window_size=vad_cfg.window_size)
