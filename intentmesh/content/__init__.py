"""
Content — Prompt text for the LLM-backed services

Text is data, not code embedded in methods.
"""

from .prompts import EXTRACT_INTENTS_SYSTEM_PROMPT, DETECT_DRIFT_SYSTEM_PROMPT

__all__ = ['EXTRACT_INTENTS_SYSTEM_PROMPT', 'DETECT_DRIFT_SYSTEM_PROMPT']
