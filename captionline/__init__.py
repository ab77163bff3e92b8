"""
captionline - Catalog-wide multilingual subtitle pipeline.

Turns a catalog of remote videos into per-language WebVTT captions through a
bounded-concurrency pipeline: download → speech audio extraction →
transcription → batched LLM translation → verification → optional upload.
"""

__version__ = "0.1.0"
