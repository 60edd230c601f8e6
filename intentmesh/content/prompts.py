"""
Prompt templates for the LLM-backed classifier and extractor.

Both prompts ask for a single JSON object so the response can be parsed
without provider-specific structured-output features.
"""

from typing import Iterable, List, Optional

EXTRACT_INTENTS_SYSTEM_PROMPT = """You extract requirements that the USER stated in a coding conversation.

An intent is a concrete, verifiable rule the code must follow. Only take
intents from USER messages. Ignore anything the assistant proposed or
explained, vague discussion, tooling choices ("use React") and small talk.

Good signals: "must", "should", "only", "never", access rules
("only admins can refund"), validation rules, business rules, security rules.

For each intent return:
- title: 2-5 word name
- statement: normalized rule, e.g. "System must ..." or "Only ... may ..."
- confidence: "high" when the user said it explicitly, "medium" or "low" otherwise
- evidence: exact quote from the USER message
- tags: short categories such as "auth", "security", "validation", "payments"

Return at most 10 intents. Returning none is better than returning vague ones.

Respond with JSON only:
{"intents": [{"title": "...", "statement": "...", "confidence": "high",
              "evidence": "...", "tags": ["..."]}]}"""


DETECT_DRIFT_SYSTEM_PROMPT = """You review code against a list of stated requirements (intents).

Report only real violations, places where the code does NOT satisfy an
intent. Style issues are not violations. If the code satisfies every
intent, return an empty list.

For each violation return:
- intentId: id of the violated intent, exactly as given in brackets
- severity: "error" (clear violation), "warning" (likely issue) or "info"
- summary: one line
- explanation: why this violates the intent
- lineStart, lineEnd: {line_rule}
- confidence: number between 0 and 1
- suggestedFix: optional short fix

Respond with JSON only:
{{"violations": [{{"intentId": "...", "severity": "error", "summary": "...",
                  "explanation": "...", "lineStart": 1, "lineEnd": 1,
                  "confidence": 0.9, "suggestedFix": "..."}}]}}"""

RELATIVE_LINE_RULE = "line numbers within the snippet, 1-indexed from its first line"
ABSOLUTE_LINE_RULE = ("the line numbers printed at the start of each snippet line "
                      "(\"<n>: code\"); echo them exactly")


def drift_system_prompt(absolute_line_numbers: bool) -> str:
    rule = ABSOLUTE_LINE_RULE if absolute_line_numbers else RELATIVE_LINE_RULE
    return DETECT_DRIFT_SYSTEM_PROMPT.format(line_rule=rule)


def format_conversation_for_extraction(messages: Iterable) -> str:
    """Label turns USER / ASSISTANT so the model can ignore assistant text."""
    turns: List[str] = []
    for message in messages:
        label = "USER" if message.role == "user" else "ASSISTANT"
        turns.append(f"{label}:\n{message.content}")
    body = "\n\n---\n\n".join(turns)
    return f'Extract intents ONLY from messages labelled "USER:".\n\n{body}'


def _evidence_of(intent) -> Optional[str]:
    for source in intent.sources:
        evidence = source.metadata.get("evidence")
        if evidence:
            return evidence
    return None


def format_drift_check_input(intents: Iterable, code: str, file_path: str, language: str) -> str:
    """
    Render the classifier user message.

    Intents are listed as  N. [id] title: statement (Evidence: "...")
    followed by the code in a fenced block.
    """
    lines = []
    for number, intent in enumerate(intents, 1):
        line = f"{number}. [{intent.id}] {intent.title}: {intent.statement}"
        evidence = _evidence_of(intent)
        if evidence:
            line += f' (Evidence: "{evidence}")'
        lines.append(line)

    return (
        "## Intents to check:\n"
        + "\n".join(lines)
        + f"\n\n## Code to analyze ({file_path}, {language}):\n"
        + f"```{language}\n{code}\n```\n\n"
        + "Identify any violations of the intents above."
    )
