"""
Output grammar and parser for threat analysis completions.

The engine decodes against ANALYSIS_GRAMMAR (GBNF), so well-behaved output
is always a three-field JSON object. Parsing still validates in two stages
because a truncated or corrupted completion is possible:

1. JSON parse (object required, optional markdown fence stripped)
2. JSON Schema (field names, category enum, confidence in [0, 1))

Any failure raises OutputParseError, which the proxy retries once.
"""

import json
import re

import structlog
from jsonschema import Draft7Validator

from mailguard.llm.exceptions import OutputParseError
from mailguard.models.enums import ThreatType
from mailguard.models.messages import AnalysisResult


logger = structlog.get_logger(__name__)


def _build_grammar() -> str:
    threats = " | ".join(f'"\\"{label}\\""' for label in ThreatType.model_labels())
    return (
        r'root ::= "{" ws "\"brief_analysis\":" ws string "," ws "\"type\":" ws threat '
        r'"," ws "\"confidence\":" ws confidence ws "}"' "\n"
        f"threat ::= {threats}\n"
        r'confidence ::= "0" | "0." [0-9] [0-9]?' "\n"
        r'string ::= "\"" ([^"\\] | "\\" ["\\bfnrt])* "\""' "\n"
        r"ws ::= [ \t\n]*" "\n"
    )


ANALYSIS_GRAMMAR = _build_grammar()

ANALYSIS_SCHEMA: dict = {
    "type": "object",
    "required": ["brief_analysis", "type", "confidence"],
    "additionalProperties": False,
    "properties": {
        "brief_analysis": {"type": "string", "minLength": 1},
        "type": {"type": "string", "enum": ThreatType.model_labels()},
        "confidence": {"type": "number", "minimum": 0, "exclusiveMaximum": 1},
    },
}

_VALIDATOR = Draft7Validator(ANALYSIS_SCHEMA)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def parse_analysis(content: str) -> AnalysisResult:
    """
    Parse a completion into an AnalysisResult.

    Args:
        content: Raw completion text

    Returns:
        Validated AnalysisResult

    Raises:
        OutputParseError: Empty, malformed, or schema-violating output
    """
    if not content or not content.strip():
        raise OutputParseError("Completion is empty", details={"content_snippet": content})

    match = _FENCE_RE.match(content)
    text = match.group(1) if match else content.strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise OutputParseError(
            f"Completion is not valid JSON: {e.msg}",
            details={
                "content_snippet": text[:500],
                "parse_error": f"{e.msg} at line {e.lineno} col {e.colno}",
            },
        ) from e

    if not isinstance(parsed, dict):
        raise OutputParseError(
            f"Completion is not a JSON object (got {type(parsed).__name__})",
            details={"content_snippet": text[:500]},
        )

    errors = list(_VALIDATOR.iter_errors(parsed))
    if errors:
        messages = []
        for error in errors[:10]:
            path = ".".join(str(p) for p in error.path) if error.path else "root"
            messages.append(f"{path}: {error.message}")
        raise OutputParseError(
            f"Completion failed schema validation with {len(errors)} error(s)",
            details={"validation_errors": messages, "content_snippet": text[:500]},
        )

    logger.debug("Parsed analysis completion", threat_type=parsed["type"])
    return AnalysisResult.model_validate(parsed)
