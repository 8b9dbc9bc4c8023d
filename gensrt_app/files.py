"""Discovery of media and subtitle files to queue, and their output paths."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = frozenset(
    {".wav", ".mp3", ".flac", ".m4a", ".ogg", ".mp4", ".mkv", ".mov", ".avi", ".webm"}
)
SUBTITLE_EXTENSION = ".srt"


def subtitle_path_for(source: Path, output_dir: Path | None = None) -> Path:
    """Sibling ``.srt`` of a media file, or the same name under ``output_dir``."""
    source = Path(source)
    directory = Path(output_dir) if output_dir else source.parent
    return directory / f"{source.stem}{SUBTITLE_EXTENSION}"


def translated_path_for(source: Path, target_lang: str, output_dir: Path | None = None) -> Path:
    """``<stem>-<target>.srt`` beside the source subtitle, or under ``output_dir``."""
    source = Path(source)
    directory = Path(output_dir) if output_dir else source.parent
    return directory / f"{source.stem}-{target_lang}{SUBTITLE_EXTENSION}"


def _candidates(input_path: Path, accept) -> list[Path]:
    """Files under ``input_path`` (a file or one directory level) passing ``accept``.

    Raises:
        FileNotFoundError: If ``input_path`` does not exist
    """
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"The path '{input_path}' does not exist")

    if input_path.is_dir():
        entries = sorted(p for p in input_path.iterdir() if p.is_file())
    else:
        entries = [input_path]
    return [p for p in entries if accept(p)]


def discover_media_files(input_path: Path, output_dir: Path | None = None) -> list[Path]:
    """Media files to transcribe.

    A file whose subtitle output already exists is skipped, not reported as
    an error.

    Raises:
        FileNotFoundError: If ``input_path`` does not exist
    """
    files = []
    for path in _candidates(input_path, lambda p: p.suffix.lower() in MEDIA_EXTENSIONS):
        if subtitle_path_for(path, output_dir).exists():
            logger.info("Skipping %s (SRT already exists)", path.name)
            continue
        files.append(path)
    return files


def discover_subtitle_files(
    input_path: Path,
    target_lang: str,
    output_dir: Path | None = None,
) -> list[Path]:
    """Subtitle files to translate into ``target_lang``.

    Translations produced earlier (``*-<target>.srt``) are not re-translated,
    and a file whose translation already exists is skipped.

    Raises:
        FileNotFoundError: If ``input_path`` does not exist
    """
    suffix = f"-{target_lang}"
    files = []
    for path in _candidates(input_path, lambda p: p.suffix.lower() == SUBTITLE_EXTENSION):
        if Path(input_path).is_dir() and path.stem.endswith(suffix):
            continue
        if translated_path_for(path, target_lang, output_dir).exists():
            logger.info("Skipping %s (translation already exists)", path.name)
            continue
        files.append(path)
    return files

