"""
Parsing helpers for JSON returned by LLMs.

Models wrap JSON in markdown fences or add a sentence before it; both are
tolerated. Anything else is a parse failure for the caller to handle.
"""

import json
from typing import Any, Dict


def parse_json_object(response: str) -> Dict[str, Any]:
    """
    Extract the JSON object from an LLM response.

    Raises:
        ValueError: if no JSON object can be decoded
    """
    clean = response.strip()
    if clean.startswith("```"):
        # Remove code fence
        lines = clean.split('\n')
        clean = '\n'.join(lines[1:-1]) if lines[-1].strip() == "```" else '\n'.join(lines[1:])
        clean = clean.strip()

    try:
        data = json.loads(clean)
    except json.JSONDecodeError:
        start, end = clean.find("{"), clean.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object in response")
        data = json.loads(clean[start:end + 1])

    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data
