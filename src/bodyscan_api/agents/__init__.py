"""LLM access for insight generation."""

from .llm import get_insight_llm, get_llm_info

__all__ = ["get_insight_llm", "get_llm_info"]
