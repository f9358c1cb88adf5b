"""Prompt templates for LLM calls."""

from .insight import INSIGHT_SYSTEM_PROMPT, format_insight_prompt

__all__ = ["INSIGHT_SYSTEM_PROMPT", "format_insight_prompt"]
