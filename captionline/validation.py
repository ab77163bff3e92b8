"""
captionline.validation - Dependency checks run before processing.

Validates the external tools (FFmpeg, the speech-to-text engine and its
model) and free disk space in the working directories.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Any

from captionline.config import CaptionlineConfig
from captionline.exceptions import DependencyError


def _resolve_binary(binary: str) -> str | None:
    found = shutil.which(binary)
    if found:
        return found
    path = Path(binary)
    if path.is_file() and os.access(path, os.X_OK):
        return str(path)
    return None


def check_ffmpeg(ffmpeg_bin: str = "ffmpeg") -> dict[str, str]:
    """Check that FFmpeg is installed and get its version.

    Returns:
        Dict with 'path' and 'version'

    Raises:
        DependencyError: If FFmpeg is not found
    """
    ffmpeg_path = _resolve_binary(ffmpeg_bin)
    if not ffmpeg_path:
        raise DependencyError(
            "ffmpeg",
            f"FFmpeg not found ({ffmpeg_bin})",
            "Install with: brew install ffmpeg (macOS) or apt install ffmpeg (Linux)",
        )

    try:
        proc = subprocess.run(
            [ffmpeg_path, "-version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        version_line = proc.stdout.split("\n")[0]
        version = version_line.split()[2] if version_line else "unknown"
    except (subprocess.TimeoutExpired, IndexError, OSError):
        version = "unknown"

    return {"path": ffmpeg_path, "version": version}


def check_whisper(whisper_bin: str, model_path: str) -> dict[str, str]:
    """Check the whisper.cpp binary and model file.

    Raises:
        DependencyError: If either is missing
    """
    bin_path = _resolve_binary(whisper_bin)
    if not bin_path:
        raise DependencyError(
            "whisper.cpp",
            f"Speech-to-text binary not found or not executable: {whisper_bin}",
            "Build whisper.cpp (make) and set whisper_bin in captionline.yaml",
        )

    model = Path(model_path)
    if not model.is_file():
        raise DependencyError(
            "whisper model",
            f"Model file not found: {model_path}",
            "Download with: ./whisper.cpp/models/download-ggml-model.sh base",
        )

    return {
        "path": bin_path,
        "model": str(model),
        "model_mb": str(model.stat().st_size // (1024 * 1024)),
    }


def check_disk_space(path: Path, required_mb: int) -> dict[str, Any]:
    """Check if there's enough disk space at the given path.

    A path that does not exist yet is checked through its nearest existing
    parent.
    """
    check_path = path
    while not check_path.exists() and check_path != check_path.parent:
        check_path = check_path.parent

    stat = shutil.disk_usage(check_path)
    available_mb = stat.free // (1024 * 1024)
    return {
        "available_mb": available_mb,
        "required_mb": required_mb,
        "sufficient": available_mb >= required_mb,
    }


def run_preflight_checks(config: CaptionlineConfig, required_mb: int = 1000) -> dict[str, Any]:
    """Run all local dependency checks.

    Returns:
        Dict with 'passed' and per-check results; failed checks carry
        'error' and, where known, 'install_hint'
    """
    results: dict[str, Any] = {"passed": True, "checks": {}}

    try:
        results["checks"]["ffmpeg"] = check_ffmpeg(config.ffmpeg_bin)
    except DependencyError as e:
        results["checks"]["ffmpeg"] = {
            "dependency": e.dependency,
            "error": e.message,
            "install_hint": e.install_hint,
        }
        results["passed"] = False

    try:
        results["checks"]["whisper"] = check_whisper(config.whisper_bin, config.whisper_model)
    except DependencyError as e:
        results["checks"]["whisper"] = {
            "dependency": e.dependency,
            "error": e.message,
            "install_hint": e.install_hint,
        }
        results["passed"] = False

    try:
        disk = check_disk_space(config.temp_dir.resolve(), required_mb)
    except OSError as e:
        results["checks"]["disk_space"] = {"error": f"Cannot check disk space: {e}"}
        results["passed"] = False
    else:
        results["checks"]["disk_space"] = disk
        if not disk["sufficient"]:
            results["passed"] = False

    return results
