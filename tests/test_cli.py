"""Tests for captionline CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from conftest import SAMPLE_VTT
from typer.testing import CliRunner

from captionline import __version__
from captionline.catalog.source import CatalogItemSource
from captionline.cli import app, find_local_items
from captionline.models import RunResult

runner = CliRunner()


def write_cli_config(tmp_path: Path, **values: object) -> Path:
    data = {
        "output_dir": str(tmp_path / "output"),
        "temp_dir": str(tmp_path / "temp"),
        "languages": ["en", "fr"],
    }
    data.update(values)
    path = tmp_path / "captionline.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestVersion:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestInitCommand:
    def test_init_writes_config(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["init", "-d", str(tmp_path), "-p", "turbo"])
        assert result.exit_code == 0
        data = yaml.safe_load((tmp_path / "captionline.yaml").read_text())
        assert data["profile"] == "turbo"
        assert data["max_items"] == 10

    def test_init_refuses_to_overwrite(self, tmp_path: Path) -> None:
        existing = tmp_path / "captionline.yaml"
        existing.write_text("profile: fast\n")
        result = runner.invoke(app, ["init", "-d", str(tmp_path)])
        assert result.exit_code == 1
        assert existing.read_text() == "profile: fast\n"

    def test_init_force_overwrites(self, tmp_path: Path) -> None:
        (tmp_path / "captionline.yaml").write_text("profile: fast\n")
        result = runner.invoke(app, ["init", "-d", str(tmp_path), "--force"])
        assert result.exit_code == 0
        assert "profile: full" in (tmp_path / "captionline.yaml").read_text()

    def test_init_unknown_profile(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["init", "-d", str(tmp_path), "-p", "warp"])
        assert result.exit_code == 1
        assert "Unknown profile" in result.output


class TestVerifyCommand:
    def test_complete_items(self, tmp_path: Path) -> None:
        config = write_cli_config(tmp_path)
        out = tmp_path / "output"
        out.mkdir()
        for lang in ("en", "fr"):
            (out / f"River_Talk_{lang}.vtt").write_text(SAMPLE_VTT, encoding="utf-8")

        result = runner.invoke(app, ["--config", str(config), "verify"])

        assert result.exit_code == 0
        assert "1/1 item(s) complete" in result.output

    def test_incomplete_item_fails(self, tmp_path: Path) -> None:
        config = write_cli_config(tmp_path)
        out = tmp_path / "output"
        out.mkdir()
        (out / "River_Talk_en.vtt").write_text(SAMPLE_VTT, encoding="utf-8")

        result = runner.invoke(app, ["--config", str(config), "verify"])

        assert result.exit_code == 1
        assert "0/1 item(s) complete" in result.output

    def test_missing_output_directory(self, tmp_path: Path) -> None:
        config = write_cli_config(tmp_path)
        result = runner.invoke(app, ["--config", str(config), "verify"])
        assert result.exit_code == 0

    def test_missing_config_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--config", str(tmp_path / "none.yaml"), "verify"])
        assert result.exit_code == 1


class TestFindLocalItems:
    def test_groups_artifacts_by_slug(self, tmp_path: Path) -> None:
        for name in ("A_en.vtt", "A_fr.vtt", "Long_Title_ar.vtt", "notes.txt", "B_speech.vtt"):
            (tmp_path / name).write_text("x")
        assert [i.slug for i in find_local_items(tmp_path)] == ["A", "Long_Title"]


class TestRunCommand:
    def test_requires_api_key(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CAPTIONLINE_API_KEY", raising=False)
        config = write_cli_config(tmp_path)
        result = runner.invoke(app, ["--config", str(config), "run"])
        assert result.exit_code == 1
        assert "No catalog API key" in result.output

    def test_runs_catalog_source_with_filters(self, tmp_path: Path) -> None:
        config = write_cli_config(
            tmp_path, catalog_api_key="key", max_items=4, last_n_days=7
        )
        run_source = AsyncMock(return_value=RunResult())
        with (
            patch("captionline.llm.client.LLMClient.initialize", new=AsyncMock(return_value="m")),
            patch("captionline.pipeline.PipelineRunner.run_source", new=run_source),
        ):
            result = runner.invoke(app, ["--config", str(config), "run"])

        assert result.exit_code == 0
        assert "No items selected" in result.output
        [source] = run_source.call_args.args
        assert isinstance(source, CatalogItemSource)
        assert run_source.call_args.kwargs == {"last_n_days": 7, "max_items": 4}


class TestTranscribeCommand:
    def test_transcribes_into_output_dir(self, tmp_path: Path, fake_engine: Path) -> None:
        config = write_cli_config(tmp_path, whisper_bin=str(fake_engine))
        audio = tmp_path / "talk.wav"
        audio.write_bytes(b"RIFF")

        result = runner.invoke(
            app, ["--config", str(config), "transcribe", str(audio), "-o", str(tmp_path / "vtt")]
        )

        assert result.exit_code == 0
        assert "Hello there" in (tmp_path / "vtt" / "talk.vtt").read_text()

    def test_failure_sets_exit_code(self, tmp_path: Path, fake_engine: Path) -> None:
        config = write_cli_config(tmp_path, whisper_bin=str(fake_engine))
        result = runner.invoke(
            app, ["--config", str(config), "transcribe", str(tmp_path / "missing.wav")]
        )
        assert result.exit_code == 1


class TestCheckCommand:
    def test_missing_tools_fail(self, tmp_path: Path) -> None:
        config = write_cli_config(
            tmp_path,
            ffmpeg_bin=str(tmp_path / "no-ffmpeg"),
            whisper_bin=str(tmp_path / "no-whisper"),
        )
        result = runner.invoke(app, ["--config", str(config), "check", "--local"])
        assert result.exit_code == 1
        assert "Some checks failed" in result.output


class TestClearCaptionsCommand:
    def test_requires_ids_or_all(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CAPTIONLINE_API_KEY", "secret")
        config = write_cli_config(tmp_path)
        result = runner.invoke(app, ["--config", str(config), "clear-captions"])
        assert result.exit_code == 1
        assert "--all" in result.output
