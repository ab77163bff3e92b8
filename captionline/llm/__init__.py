"""
captionline.llm - Translation service access.

A litellm-backed client that classifies provider errors into typed remote
errors, plus Jinja2 prompt templates for batched subtitle translation.
"""

from __future__ import annotations
