"""Offline recognition model variants backed by sherpa-onnx."""

import logging
from dataclasses import dataclass
from pathlib import Path

from gensrt_app.config import AudioConfig, ConfigError, ModelConfig

logger = logging.getLogger(__name__)

VAD_MODEL_FILENAME = "silero_vad.onnx"


@dataclass(frozen=True)
class ModelVariant:
    """A recognizer family plus the directory holding its files.

    Subclasses name the files they need and know how to build the
    sherpa-onnx ``OfflineRecognizer`` for them.
    """

    name: str
    model_dir: Path

    def model_paths(self) -> dict[str, Path]:
        raise NotImplementedError

    def tokens_path(self) -> Path:
        return self.model_dir / "tokens.txt"

    def vad_model_path(self) -> Path:
        return self.model_dir / VAD_MODEL_FILENAME

    def required_files(self) -> list[Path]:
        return [*self.model_paths().values(), self.tokens_path(), self.vad_model_path()]

    def build_recognizer(self, model_cfg: ModelConfig, audio_cfg: AudioConfig):
        raise NotImplementedError


@dataclass(frozen=True)
class SenseVoiceModel(ModelVariant):
    """SenseVoice multilingual model (zh/en/ja/ko/yue)."""

    def model_paths(self) -> dict[str, Path]:
        return {"model": self.model_dir / "model.int8.onnx"}

    def build_recognizer(self, model_cfg: ModelConfig, audio_cfg: AudioConfig):
        import sherpa_onnx

        return sherpa_onnx.OfflineRecognizer.from_sense_voice(
            model=str(self.model_paths()["model"]),
            tokens=str(self.tokens_path()),
            num_threads=model_cfg.num_threads,
            sample_rate=audio_cfg.sample_rate,
            feature_dim=audio_cfg.feature_dim,
            use_itn=True,
            provider=model_cfg.provider,
            debug=model_cfg.debug,
        )


@dataclass(frozen=True)
class NemoCtcModel(ModelVariant):
    """NeMo fast-conformer CTC model (European languages)."""

    def model_paths(self) -> dict[str, Path]:
        return {"model": self.model_dir / "model.onnx"}

    def build_recognizer(self, model_cfg: ModelConfig, audio_cfg: AudioConfig):
        import sherpa_onnx

        return sherpa_onnx.OfflineRecognizer.from_nemo_ctc(
            model=str(self.model_paths()["model"]),
            tokens=str(self.tokens_path()),
            num_threads=model_cfg.num_threads,
            sample_rate=audio_cfg.sample_rate,
            feature_dim=audio_cfg.feature_dim,
            provider=model_cfg.provider,
            debug=model_cfg.debug,
        )


@dataclass(frozen=True)
class TransducerModel(ModelVariant):
    """Zipformer transducer model (ReazonSpeech Japanese)."""

    def model_paths(self) -> dict[str, Path]:
        return {
            "encoder": self.model_dir / "encoder-epoch-99-avg-1.int8.onnx",
            "decoder": self.model_dir / "decoder-epoch-99-avg-1.int8.onnx",
            "joiner": self.model_dir / "joiner-epoch-99-avg-1.int8.onnx",
        }

    def build_recognizer(self, model_cfg: ModelConfig, audio_cfg: AudioConfig):
        import sherpa_onnx

        paths = self.model_paths()
        return sherpa_onnx.OfflineRecognizer.from_transducer(
            encoder=str(paths["encoder"]),
            decoder=str(paths["decoder"]),
            joiner=str(paths["joiner"]),
            tokens=str(self.tokens_path()),
            num_threads=model_cfg.num_threads,
            sample_rate=audio_cfg.sample_rate,
            feature_dim=audio_cfg.feature_dim,
            decoding_method="greedy_search",
            provider=model_cfg.provider,
            debug=model_cfg.debug,
        )


_MODEL_TYPES: dict[str, tuple[type[ModelVariant], str]] = {
    "senseVoice": (
        SenseVoiceModel,
        "sherpa-onnx-sense-voice-zh-en-ja-ko-yue-2024-07-17",
    ),
    "nemoCtc": (
        NemoCtcModel,
        "sherpa-onnx-nemo-fast-conformer-transducer-be-de-en-es-fr-hr-it-pl-ru-uk-20k",
    ),
    "transducer": (
        TransducerModel,
        "sherpa-onnx-zipformer-ja-reazonspeech-2024-08-01",
    ),
}

MODEL_NAMES = tuple(_MODEL_TYPES)


def get_model(name: str, models_root: str | Path = ".") -> ModelVariant:
    """Resolve a model name to its variant rooted under ``models_root``.

    Raises:
        ConfigError: If the name is unknown
    """
    try:
        model_type, dirname = _MODEL_TYPES[name]
    except KeyError:
        raise ConfigError(
            f"Unknown model '{name}'. Available: {', '.join(MODEL_NAMES)}"
        ) from None
    return model_type(name=name, model_dir=Path(models_root) / dirname)


def validate_model_files(model: ModelVariant) -> None:
    """Check that every file the model needs is present.

    Raises:
        ConfigError: If any model file is missing
    """
    missing = [path for path in model.required_files() if not path.exists()]
    if missing:
        raise ConfigError(
            f"Model '{model.name}' is missing files:\n  "
            + "\n  ".join(str(path) for path in missing)
        )
    logger.debug("Model files validated for %s in %s", model.name, model.model_dir)


def describe_models(models_root: str | Path = ".") -> list[dict]:
    """List known models with their directory and install state."""
    result = []
    for name in MODEL_NAMES:
        model = get_model(name, models_root)
        result.append(
            {
                "name": name,
                "type": type(model).__name__,
                "directory": str(model.model_dir),
                "installed": all(path.exists() for path in model.required_files()),
            }
        )
    return result
