"""Prompt template loading and rendering.

Templates contain literal JSON braces, so placeholders are substituted by
name in a single pass instead of with str.format.
"""
import re
from pathlib import Path
from typing import Mapping

_PROMPTS_DIR = Path(__file__).parent / "prompts"
_PLACEHOLDER = re.compile(r"\{([a-z_]+)\}")


def load_prompt(filename: str) -> str:
    return (_PROMPTS_DIR / filename).read_text(encoding="utf-8")


def render(template: str, values: Mapping[str, str]) -> str:
    """Replace {name} placeholders present in `values`; leave other braces alone."""
    def _sub(match: re.Match) -> str:
        name = match.group(1)
        return str(values[name]) if name in values else match.group(0)

    return _PLACEHOLDER.sub(_sub, template)
