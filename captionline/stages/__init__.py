"""
captionline.stages - Per-item pipeline stages.

Each item runs, in order:
- download: fetch the source asset to the temp dir
- extract: speech-band 16kHz mono WAV via FFmpeg
- transcribe: WebVTT transcript via a whisper.cpp-style engine
- translate: batched LLM translation per target language
- verify: the verification gate over every required artifact
- upload: optional publication back to the catalog
"""

from __future__ import annotations
