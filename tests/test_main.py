"""Tests for main CLI module."""

import json
import logging
from unittest.mock import AsyncMock, Mock, patch

import pytest
from typer.testing import CliRunner

from gensrt_app.config import Config
from gensrt_app.main import _apply_general_settings, app

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep config discovery away from the developer's real files."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("GENSRT_CONFIG", raising=False)
    monkeypatch.delenv("GENSRT_MODELS_ROOT", raising=False)


class TestListModelsCommand:
    """Tests for list-models command."""

    def test_list_models_table_output(self, tmp_path):
        result = runner.invoke(app, ["list-models", "--models-root", str(tmp_path)])
        assert result.exit_code == 0
        assert "Available models:" in result.stdout
        assert "senseVoice" in result.stdout
        assert "missing" in result.stdout

    def test_list_models_json_output(self, tmp_path):
        result = runner.invoke(app, ["list-models", "--json", "--models-root", str(tmp_path)])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [m["name"] for m in data] == ["senseVoice", "nemoCtc", "transducer"]
        assert all(m["installed"] is False for m in data)

    def test_list_models_bad_config(self, tmp_path):
        result = runner.invoke(app, ["list-models", "--config", str(tmp_path / "none.toml")])
        assert result.exit_code == 1


class TestTranscribeCommand:
    """Tests for transcribe command."""

    def test_unknown_model(self, tmp_path):
        """Test an unknown model aborts before anything runs."""
        result = runner.invoke(app, ["transcribe", str(tmp_path), "--model", "whisper"])
        assert result.exit_code == 1

    def test_missing_model_files(self, tmp_path):
        result = runner.invoke(app, ["transcribe", str(tmp_path)])
        assert result.exit_code == 1

    @patch("gensrt_app.main.validate_model_files")
    def test_missing_path(self, mock_validate, tmp_path):
        """Test a missing input path exits with code 1."""
        result = runner.invoke(app, ["transcribe", str(tmp_path / "nope")])
        assert result.exit_code == 1

    @patch("gensrt_app.main.validate_model_files")
    def test_no_files(self, mock_validate, tmp_path):
        result = runner.invoke(app, ["transcribe", str(tmp_path)])
        assert result.exit_code == 0

    @patch("gensrt_app.main.TranscriptionPipeline")
    @patch("gensrt_app.main.validate_model_files")
    def test_transcribe_runs_jobs(self, mock_validate, mock_pipeline_cls, tmp_path):
        """Test each discovered file becomes one transcription job."""
        (tmp_path / "a.mp4").write_bytes(b"")
        (tmp_path / "b.wav").write_bytes(b"")
        pipeline = Mock()
        pipeline.transcribe = AsyncMock(return_value=None)
        mock_pipeline_cls.return_value = pipeline

        result = runner.invoke(app, ["transcribe", str(tmp_path), "--json-events"])

        assert result.exit_code == 0
        assert pipeline.transcribe.await_count == 2
        first_call = pipeline.transcribe.await_args_list[0]
        assert first_call.args[1] == tmp_path / "a.srt"
        assert '"type": "job_complete"' in result.output

    @patch("gensrt_app.main.TranscriptionPipeline")
    @patch("gensrt_app.main.validate_model_files")
    def test_failed_job_exit_code(self, mock_validate, mock_pipeline_cls, tmp_path):
        """Test a failed job makes the run exit non-zero."""
        (tmp_path / "a.mp4").write_bytes(b"")
        pipeline = Mock()
        pipeline.transcribe = AsyncMock(side_effect=RuntimeError("decoder missing"))
        mock_pipeline_cls.return_value = pipeline

        result = runner.invoke(app, ["transcribe", str(tmp_path)])

        assert result.exit_code == 1

    @patch("gensrt_app.main.TranscriptionPipeline")
    @patch("gensrt_app.main.validate_model_files")
    def test_output_dir(self, mock_validate, mock_pipeline_cls, tmp_path):
        (tmp_path / "a.mp4").write_bytes(b"")
        out = tmp_path / "subs"
        pipeline = Mock()
        pipeline.transcribe = AsyncMock(return_value=None)
        mock_pipeline_cls.return_value = pipeline

        result = runner.invoke(app, ["transcribe", str(tmp_path / "a.mp4"), "-o", str(out)])

        assert result.exit_code == 0
        assert pipeline.transcribe.await_args.args[1] == out / "a.srt"


class TestTranslateCommand:
    """Tests for translate command."""

    @patch("gensrt_app.main.SubtitleTranslator")
    def test_translate_runs_jobs(self, mock_translator_cls, tmp_path):
        (tmp_path / "talk.srt").write_text("", encoding="utf-8")
        translator = Mock()
        translator.translate_file = AsyncMock(return_value=None)
        mock_translator_cls.return_value = translator

        result = runner.invoke(app, ["translate", str(tmp_path), "en", "es"])

        assert result.exit_code == 0
        translator.cache.load.assert_called_once()
        args = translator.translate_file.await_args.args
        assert args == (tmp_path / "talk.srt", tmp_path / "talk-es.srt", "en", "es")

    def test_translate_missing_path(self, tmp_path):
        result = runner.invoke(app, ["translate", str(tmp_path / "nope"), "en", "es"])
        assert result.exit_code == 1


class TestGeneralSettings:
    """Tests for the [general] configuration section."""

    @pytest.fixture(autouse=True)
    def restore_root_level(self):
        root = logging.getLogger()
        level = root.level
        yield
        root.setLevel(level)

    def test_verbose_from_config(self):
        """Test general.verbose raises the root logger to DEBUG."""
        logging.getLogger().setLevel(logging.INFO)
        cfg = Config()
        cfg.general.verbose = True

        _apply_general_settings(cfg)

        assert logging.getLogger().level == logging.DEBUG

    def test_defaults_leave_logging_alone(self):
        logging.getLogger().setLevel(logging.INFO)
        cfg = _apply_general_settings(Config())

        assert logging.getLogger().level == logging.INFO
        assert cfg.model.debug is False

    def test_debug_enables_engine_debug(self):
        cfg = Config()
        cfg.general.debug = True

        assert _apply_general_settings(cfg).model.debug is True

    @patch("gensrt_app.main.TranscriptionPipeline")
    @patch("gensrt_app.main.validate_model_files")
    def test_config_file_general_section(self, mock_validate, mock_pipeline_cls, tmp_path):
        """Test a [general] section in ./gensrt.toml reaches the pipeline and logging."""
        (tmp_path / "gensrt.toml").write_text(
            "[general]\nverbose = true\ndebug = true\n", encoding="utf-8"
        )
        media = tmp_path / "media"
        media.mkdir()
        (media / "a.mp4").write_bytes(b"")
        pipeline = Mock()
        pipeline.transcribe = AsyncMock(return_value=None)
        mock_pipeline_cls.return_value = pipeline
        logging.getLogger().setLevel(logging.INFO)

        result = runner.invoke(app, ["transcribe", str(media)])

        assert result.exit_code == 0
        cfg = mock_pipeline_cls.call_args.args[0]
        assert cfg.general.verbose is True
        assert cfg.model.debug is True
        assert logging.getLogger().level == logging.DEBUG
