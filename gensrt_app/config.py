"""Configuration loader and validation."""

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "AudioConfig",
    "VadConfig",
    "ModelConfig",
    "MergeConfig",
    "DecoderConfig",
    "TranslationConfig",
    "OutputConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
]

DEFAULT_TRANSLATE_ENDPOINT = "https://translate.googleapis.com/translate_a/single"

SECTIONS = ("audio", "vad", "model", "merge", "decoder", "translation", "output", "general")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class AudioConfig:
    """Decoded audio format and sample buffer sizing."""

    sample_rate: int = 16000
    feature_dim: int = 80
    buffer_seconds: float = 5.0


@dataclass
class VadConfig:
    """Silero voice-activity detector settings."""

    threshold: float = 0.5
    min_speech_duration: float = 0.25
    min_silence_duration: float = 0.5
    window_size: int = 512
    num_threads: int = 1
    buffer_seconds: float = 30.0
    provider: str = "cpu"


@dataclass
class ModelConfig:
    """Offline recognizer selection."""

    name: str = "senseVoice"
    models_root: str = "."
    num_threads: int = 2
    provider: str = "cpu"
    debug: bool = False


@dataclass
class MergeConfig:
    """Cue merge thresholds in seconds."""

    max_duration: float = 15.0
    max_pause: float = 0.5


@dataclass
class DecoderConfig:
    """External decode process settings."""

    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    chunk_size: int = 65536
    kill_grace_seconds: float = 2.0


@dataclass
class TranslationConfig:
    """Translation endpoint, chunking and cache settings."""

    endpoint: str = DEFAULT_TRANSLATE_ENDPOINT
    chunk_bytes: int = 1000
    request_gap: float = 1.2
    timeout: float = 30.0
    cache_file: str = "cache.json"
    user_agent: str = "Mozilla/5.0"


@dataclass
class OutputConfig:
    """Where subtitle files are written (sibling of the source when unset)."""

    directory: str | None = None


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False
    debug: bool = False


@dataclass
class Config:
    """Main configuration container."""

    audio: AudioConfig = field(default_factory=AudioConfig)
    vad: VadConfig = field(default_factory=VadConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @property
    def buffer_capacity(self) -> int:
        """Circular buffer capacity in samples."""
        return max(1, int(self.audio.buffer_seconds * self.audio.sample_rate))

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. GENSRT_CONFIG env var
                  2. ./gensrt.toml
                  3. ~/.config/gensrt.toml
                  and falls back to built-in defaults when none exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit file is missing or values are invalid
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                audio=AudioConfig(**coerced["audio"]),
                vad=VadConfig(**coerced["vad"]),
                model=ModelConfig(**coerced["model"]),
                merge=MergeConfig(**coerced["merge"]),
                decoder=DecoderConfig(**coerced["decoder"]),
                translation=TranslationConfig(**coerced["translation"]),
                output=OutputConfig(**coerced["output"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate value ranges and the selected model name.

        Raises:
            ConfigError: If any setting is out of range
        """
        validate_audio_config(self.audio)
        validate_vad_config(self.vad)
        validate_model_config(self.model)
        validate_merge_config(self.merge)
        validate_decoder_config(self.decoder)
        validate_translation_config(self.translation)


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Search order:
    1. CLI-provided path (must exist)
    2. GENSRT_CONFIG environment variable
    3. ./gensrt.toml (current directory)
    4. ~/.config/gensrt.toml (user config directory)

    Returns:
        Resolved path, or None when no file was found and defaults apply

    Raises:
        ConfigError: If the CLI-provided file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    candidates = []
    if env_path := env.get("GENSRT_CONFIG"):
        candidates.append(Path(env_path))

    candidates.append(Path("gensrt.toml"))
    candidates.append(Path.home() / ".config" / "gensrt.toml")

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.debug(
        "No config file found (searched: %s), using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Unknown sections are rejected; environment overrides are applied last.
    """
    unknown = set(raw_data) - set(SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

    coerced = {}
    for section in SECTIONS:
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    if models_root := env.get("GENSRT_MODELS_ROOT"):
        coerced["model"]["models_root"] = models_root

    if endpoint := env.get("GENSRT_TRANSLATE_ENDPOINT"):
        coerced["translation"]["endpoint"] = endpoint

    return coerced


def validate_audio_config(audio_cfg: AudioConfig) -> None:
    """Validate audio configuration.

    Raises:
        ConfigError: If sample rate or buffer size is invalid
    """
    if audio_cfg.sample_rate <= 0:
        raise ConfigError(f"sample_rate must be positive, got {audio_cfg.sample_rate}")
    if audio_cfg.feature_dim <= 0:
        raise ConfigError(f"feature_dim must be positive, got {audio_cfg.feature_dim}")
    if audio_cfg.buffer_seconds <= 0:
        raise ConfigError(
            f"buffer_seconds must be positive, got {audio_cfg.buffer_seconds}"
        )


def validate_vad_config(vad_cfg: VadConfig) -> None:
    """Validate voice-activity detector configuration.

    Raises:
        ConfigError: If thresholds or window size are out of range
    """
    if not 0.0 < vad_cfg.threshold < 1.0:
        raise ConfigError(f"vad.threshold must be in (0, 1), got {vad_cfg.threshold}")
    if vad_cfg.window_size <= 0:
        raise ConfigError(f"vad.window_size must be positive, got {vad_cfg.window_size}")
    if vad_cfg.min_speech_duration < 0 or vad_cfg.min_silence_duration < 0:
        raise ConfigError("vad durations must be non-negative")
    if vad_cfg.num_threads <= 0:
        raise ConfigError(f"vad.num_threads must be positive, got {vad_cfg.num_threads}")


def validate_model_config(model_cfg: ModelConfig) -> None:
    """Validate model configuration.

    Raises:
        ConfigError: If the model name is unknown or settings are invalid
    """
    from gensrt_app.models import MODEL_NAMES

    if model_cfg.name not in MODEL_NAMES:
        raise ConfigError(
            f"Unknown model '{model_cfg.name}'. "
            f"Available: {', '.join(MODEL_NAMES)}"
        )

    valid_providers = ("cpu", "cuda", "coreml")
    if model_cfg.provider not in valid_providers:
        raise ConfigError(
            f"Invalid provider '{model_cfg.provider}'. "
            f"Must be one of: {', '.join(valid_providers)}"
        )

    if model_cfg.num_threads <= 0:
        raise ConfigError(f"num_threads must be positive, got {model_cfg.num_threads}")


def validate_merge_config(merge_cfg: MergeConfig) -> None:
    """Validate merge thresholds.

    Raises:
        ConfigError: If thresholds are not positive
    """
    if merge_cfg.max_duration <= 0:
        raise ConfigError(f"max_duration must be positive, got {merge_cfg.max_duration}")
    if merge_cfg.max_pause < 0:
        raise ConfigError(f"max_pause must be non-negative, got {merge_cfg.max_pause}")


def validate_decoder_config(decoder_cfg: DecoderConfig) -> None:
    """Validate decoder configuration.

    Raises:
        ConfigError: If chunk size or grace period is invalid
    """
    if decoder_cfg.chunk_size <= 0:
        raise ConfigError(f"chunk_size must be positive, got {decoder_cfg.chunk_size}")
    if decoder_cfg.kill_grace_seconds < 0:
        raise ConfigError(
            f"kill_grace_seconds must be non-negative, got {decoder_cfg.kill_grace_seconds}"
        )


def validate_translation_config(translation_cfg: TranslationConfig) -> None:
    """Validate translation configuration.

    Raises:
        ConfigError: If chunk budget, gap or timeout is invalid
    """
    if translation_cfg.chunk_bytes <= 0:
        raise ConfigError(
            f"chunk_bytes must be positive, got {translation_cfg.chunk_bytes}"
        )
    if translation_cfg.request_gap < 0:
        raise ConfigError(
            f"request_gap must be non-negative, got {translation_cfg.request_gap}"
        )
    if translation_cfg.timeout <= 0:
        raise ConfigError(f"timeout must be positive, got {translation_cfg.timeout}")


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().

    Args:
        path: Explicit config file path (optional)
        env: Environment variables (defaults to os.environ)

    Returns:
        Loaded Config instance

    Raises:
        ConfigError: If config cannot be loaded
    """
    return Config.from_toml(path, env=env)
