"""External ffmpeg/ffprobe processes producing raw PCM from arbitrary media."""

import asyncio
import logging
import os
import signal
import sys
from collections import deque
from pathlib import Path
from typing import AsyncIterator, Sequence

import numpy as np

logger = logging.getLogger(__name__)

STDERR_TAIL_BYTES = 8192
_USE_PROCESS_GROUP = sys.platform != "win32"


class SpawnError(Exception):
    """External process could not be started."""

    pass


class DecodeProcessError(Exception):
    """External decoder exited with a non-zero code."""

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        message = f"Decoder exited with code {returncode}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message)


def build_ffmpeg_command(
    source: Path,
    sample_rate: int = 16000,
    ffmpeg: str = "ffmpeg",
) -> list[str]:
    """Command that writes mono s16le PCM of ``source`` to stdout."""
    return [
        ffmpeg,
        "-nostdin",
        "-hide_banner",
        "-i", str(source),
        "-f", "s16le",
        "-acodec", "pcm_s16le",
        "-ac", "1",
        "-ar", str(sample_rate),
        "-",
    ]


def pcm_to_samples(data: bytes) -> np.ndarray:
    """Convert little-endian int16 PCM bytes to float32 samples in [-1, 1]."""
    return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0


class PcmConverter:
    """Converts a PCM byte stream chunk by chunk.

    A chunk boundary can split a 16-bit sample; the dangling byte is carried
    into the next chunk.
    """

    def __init__(self):
        self._pending = b""

    def convert(self, chunk: bytes) -> np.ndarray:
        data = self._pending + chunk
        usable = len(data) - (len(data) % 2)
        self._pending = data[usable:]
        return pcm_to_samples(data[:usable])

    @property
    def pending_bytes(self) -> int:
        return len(self._pending)


class DecodeProcess:
    """One supervised external decode process.

    Use as an async context manager: the process is spawned on entry and, on
    exit, terminated if still running and released.

    Example:
        async with DecodeProcess(cmd) as process:
            async for chunk in process.chunks():
                ...
            await process.check_returncode()
    """

    def __init__(self, command: Sequence[str], chunk_size: int = 65536):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.command = list(command)
        self.chunk_size = chunk_size
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_tail: deque[bytes] = deque()
        self._stderr_size = 0
        self._stderr_task: asyncio.Task | None = None
        self._terminating = False
        self.pid: int | None = None
        self.returncode: int | None = None

    async def __aenter__(self) -> "DecodeProcess":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def terminated(self) -> bool:
        """Whether termination was requested for this process."""
        return self._terminating

    @property
    def stderr_text(self) -> str:
        return b"".join(self._stderr_tail).decode("utf-8", errors="replace")

    async def start(self) -> None:
        """Spawn the process in its own process group (POSIX).

        Raises:
            SpawnError: If the executable cannot be started
        """
        if self._process is not None:
            raise RuntimeError("Decode process already started")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=_USE_PROCESS_GROUP,
            )
        except OSError as e:
            logger.error("Failed to spawn %s: %s", self.command[0], e)
            raise SpawnError(f"Failed to spawn {self.command[0]}: {e}") from e

        self.pid = self._process.pid
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        logger.info("Started decode process %s (pid=%d)", self.command[0], self.pid)

    async def _drain_stderr(self) -> None:
        """Keep the last STDERR_TAIL_BYTES of stderr for diagnostics."""
        assert self._process is not None and self._process.stderr is not None
        stream = self._process.stderr
        while True:
            data = await stream.read(4096)
            if not data:
                return
            self._stderr_tail.append(data)
            self._stderr_size += len(data)
            while self._stderr_size > STDERR_TAIL_BYTES and len(self._stderr_tail) > 1:
                self._stderr_size -= len(self._stderr_tail.popleft())

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yield stdout chunks in receipt order until end of stream."""
        if self._process is None or self._process.stdout is None:
            raise RuntimeError("Decode process not started")
        stdout = self._process.stdout
        while True:
            chunk = await stdout.read(self.chunk_size)
            if not chunk:
                return
            yield chunk

    async def wait(self) -> int:
        """Wait for exit and return the exit code."""
        if self._process is None:
            if self.returncode is None:
                raise RuntimeError("Decode process not started")
            return self.returncode
        self.returncode = await self._process.wait()
        if self._stderr_task is not None:
            await self._stderr_task
        return self.returncode

    async def check_returncode(self) -> None:
        """Wait for exit and raise on a non-zero code.

        Raises:
            DecodeProcessError: If the process exited unsuccessfully
        """
        code = await self.wait()
        logger.info("Decode process %s exited with code %d", self.pid, code)
        if code != 0:
            raise DecodeProcessError(code, self.stderr_text)

    def _signal(self, sig: signal.Signals) -> None:
        assert self._process is not None
        if _USE_PROCESS_GROUP:
            try:
                os.killpg(self._process.pid, sig)
                return
            except (ProcessLookupError, PermissionError):
                pass
        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            pass

    async def terminate(self, grace: float = 2.0) -> None:
        """Terminate the process, escalating to SIGKILL after ``grace`` seconds.

        Safe to call repeatedly and after the process has exited.
        """
        if not self.running:
            return

        self._terminating = True
        logger.info("Terminating decode process (pid=%d)", self.pid)
        self._signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(self._process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            if self.running:
                logger.warning(
                    "Decode process %d ignored SIGTERM for %.1fs, sending SIGKILL",
                    self.pid,
                    grace,
                )
                self._signal(signal.SIGKILL)
                await self._process.wait()

    async def close(self, grace: float = 2.0) -> None:
        """Terminate if still running and drop every reference to the process."""
        if self._process is None:
            return
        try:
            if self.running:
                await self.terminate(grace)
            self.returncode = await self._process.wait()
            if self._stderr_task is not None:
                if not self._stderr_task.done():
                    self._stderr_task.cancel()
                try:
                    await self._stderr_task
                except asyncio.CancelledError:
                    pass
        finally:
            self._process = None
            self._stderr_task = None


async def probe_duration(source: Path, ffprobe: str = "ffprobe", timeout: float = 30.0) -> float:
    """Return media duration in seconds, or 0.0 when it cannot be determined."""
    cmd = [
        ffprobe,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(source),
    ]
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.warning("ffprobe spawn error: %s", e)
        return 0.0

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("ffprobe timed out after %.1fs for %s", timeout, source)
        process.kill()
        await process.wait()
        return 0.0

    if process.returncode != 0:
        logger.warning(
            "ffprobe returned code %d. stderr: %s",
            process.returncode,
            stderr.decode("utf-8", errors="replace").strip(),
        )
        return 0.0

    try:
        duration = float(stdout.decode().strip())
    except ValueError:
        return 0.0
    return duration if duration > 0 and duration != float("inf") else 0.0
