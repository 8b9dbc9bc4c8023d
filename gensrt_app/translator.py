"""Chunked SRT translation against an HTTP endpoint with a persistent cache."""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import aiohttp

from gensrt_app.config import TranslationConfig
from gensrt_app.pipeline import CancellationToken
from gensrt_app.srt import FileSystemError, SubtitleEntry, build_srt, parse_srt, write_text

logger = logging.getLogger(__name__)

_TK_SEED = 406_644
_TK_SALT = 3_293_161_072


class TranslationNetworkError(Exception):
    """Translation request or response parsing failed."""

    pass


def generate_token(text: str) -> str:
    """Integrity token for a request: rolling checksum over the UTF-8 bytes."""
    a = _TK_SEED
    for byte in text.encode("utf-8"):
        a = (a + byte + _TK_SALT) & 0xFFFFFFFF
    return str(a)


def parse_translation_response(payload) -> str:
    """Concatenate the translated segments of a gtx response.

    Raises:
        TranslationNetworkError: If the payload does not have the expected shape
    """
    try:
        return "".join(part[0] for part in payload[0] if part and part[0])
    except (TypeError, IndexError, KeyError) as e:
        raise TranslationNetworkError(f"Unexpected translation response: {e}") from e


class TranslationCache:
    """Persistent text -> translation mapping stored as a JSON object."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def key(text: str, source_lang: str, target_lang: str) -> str:
        return f"{text}_{source_lang}_{target_lang}"

    def load(self) -> None:
        """Load the cache file; a missing or unreadable file starts empty."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("No translation cache at %s", self.path)
            data = {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable translation cache %s: %s", self.path, e)
            data = {}
        if not isinstance(data, dict):
            logger.warning("Ignoring translation cache %s: not an object", self.path)
            data = {}
        self._data = {str(k): str(v) for k, v in data.items()}
        logger.info("Loaded %d cached translations from %s", len(self._data), self.path)

    def get(self, text: str, source_lang: str, target_lang: str) -> str | None:
        return self._data.get(self.key(text, source_lang, target_lang))

    def set(self, text: str, source_lang: str, target_lang: str, value: str) -> None:
        self._data[self.key(text, source_lang, target_lang)] = value

    def save(self) -> None:
        """Rewrite the cache file; a write failure is logged, not raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8"
            )
        except OSError as e:
            logger.warning("Failed to save translation cache %s: %s", self.path, e)

    async def store(self, text: str, source_lang: str, target_lang: str, value: str) -> None:
        """Record a translation and rewrite the cache file."""
        async with self._lock:
            self.set(text, source_lang, target_lang, value)
            self.save()

    def __len__(self) -> int:
        return len(self._data)


class GtxClient:
    """Client for the gtx translate endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        user_agent: str = "Mozilla/5.0",
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.user_agent = user_agent

    async def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        """Translate one chunk of text.

        Raises:
            TranslationNetworkError: On transport, HTTP status or parse failure
        """
        params = {
            "client": "gtx",
            "sl": source_lang,
            "tl": target_lang,
            "hl": target_lang,
            "dt": "t",
            "ie": "UTF-8",
            "oe": "UTF-8",
            "q": text,
            "tk": generate_token(text),
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as client:
                async with client.get(
                    self.endpoint,
                    params=params,
                    headers={"User-Agent": self.user_agent},
                ) as response:
                    response.raise_for_status()
                    payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TranslationNetworkError(f"Translation request failed: {e}") from e
        return parse_translation_response(payload)


@dataclass
class TranslationReport:
    """Outcome of one translated file."""

    output_path: Path
    entries: int
    chunks: int
    failed_chunks: int
    cache_hits: int


def chunk_entries(entries: list[SubtitleEntry], chunk_bytes: int = 1000) -> list[list[int]]:
    """Group consecutive entry indices into request chunks.

    A chunk holds one line per entry and stays within ``chunk_bytes`` UTF-8
    bytes; an entry larger than the budget is sent alone.
    """
    chunks = []
    i = 0
    while i < len(entries):
        indices = []
        size = 0
        while i < len(entries):
            # newline separators only between lines
            added = len(_flatten(entries[i].text).encode("utf-8")) + (1 if indices else 0)
            if indices and size + added > chunk_bytes:
                break
            indices.append(i)
            size += added
            i += 1
            if size > chunk_bytes:
                break
        chunks.append(indices)
    return chunks


def _flatten(text: str) -> str:
    """One line per entry, so translated lines map back by position."""
    return " ".join(line.strip() for line in text.splitlines() if line.strip())


class SubtitleTranslator:
    """Translates SRT files chunk by chunk, consulting the cache first."""

    def __init__(
        self,
        config: TranslationConfig,
        cache: TranslationCache | None = None,
        client: GtxClient | None = None,
    ):
        self.config = config
        self.cache = cache if cache is not None else TranslationCache(Path(config.cache_file))
        self.client = client if client is not None else GtxClient(
            config.endpoint, timeout=config.timeout, user_agent=config.user_agent
        )

    async def translate_text(self, text: str, source_lang: str, target_lang: str) -> tuple[str, bool]:
        """Translate text, returning (translation, cache_hit).

        Raises:
            TranslationNetworkError: If the endpoint call fails
        """
        cached = self.cache.get(text, source_lang, target_lang)
        if cached is not None:
            return cached, True
        translated = await self.client.translate(text, source_lang, target_lang)
        await self.cache.store(text, source_lang, target_lang, translated)
        return translated, False

    async def translate_file(
        self,
        source: Path,
        output_path: Path,
        source_lang: str,
        target_lang: str,
        token: CancellationToken | None = None,
    ) -> TranslationReport:
        """Translate an SRT file into ``output_path``.

        A failed chunk is logged and left untranslated; the file is still
        written.

        Raises:
            JobCancelledError: If the token is cancelled between chunks
            FileSystemError: If the source cannot be read or the output written
        """
        try:
            content = Path(source).read_text(encoding="utf-8-sig")
        except OSError as e:
            raise FileSystemError(f"Failed to read {source}: {e}") from e

        entries = parse_srt(content)
        chunks = chunk_entries(entries, self.config.chunk_bytes)
        logger.info(
            "Translating %s (%s -> %s): %d entries in %d chunks",
            Path(source).name,
            source_lang,
            target_lang,
            len(entries),
            len(chunks),
        )

        failed = 0
        hits = 0
        for n, indices in enumerate(chunks):
            if token is not None:
                token.raise_if_cancelled()
            if n > 0 and self.config.request_gap > 0:
                await asyncio.sleep(self.config.request_gap)

            text = "\n".join(_flatten(entries[i].text) for i in indices)
            try:
                translated, hit = await self.translate_text(text, source_lang, target_lang)
            except TranslationNetworkError as e:
                failed += 1
                logger.error("Chunk %d/%d left untranslated: %s", n + 1, len(chunks), e)
                continue

            hits += hit
            lines = translated.split("\n")
            for i, line in zip(indices, lines):
                entries[i].text = line

        write_text(output_path, build_srt(entries))
        logger.info("Saved: %s", output_path)
        return TranslationReport(
            output_path=Path(output_path),
            entries=len(entries),
            chunks=len(chunks),
            failed_chunks=failed,
            cache_hits=hits,
        )
