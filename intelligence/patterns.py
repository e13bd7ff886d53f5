"""Intent pattern table.

The table is data: an ordered list of records loaded from JSON, so a locale
can ship its own file without touching the matcher.
"""
import json
import re
from pathlib import Path
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PATTERNS_PATH = Path(__file__).parent / "intent_patterns_pt_br.json"


class IntentPattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: str
    patterns: List[re.Pattern] = Field(min_length=1)
    follow_up_delay_minutes: int = Field(default=0, ge=0)
    label: str = ""
    score_delta: int = 0

    @field_validator("patterns", mode="before")
    @classmethod
    def _compile(cls, value):
        if not isinstance(value, list):
            return value
        return [
            re.compile(p, re.IGNORECASE) if isinstance(p, str) else p
            for p in value
        ]


def load_patterns(path: Union[str, Path]) -> List[IntentPattern]:
    """Load an intent table from a JSON array of records."""
    records = json.loads(Path(path).read_text(encoding="utf-8"))
    return [IntentPattern.model_validate(record) for record in records]


def find_pattern(table: Sequence[IntentPattern], intent: str) -> Optional[IntentPattern]:
    for pattern in table:
        if pattern.intent == intent:
            return pattern
    return None


DEFAULT_INTENT_PATTERNS = load_patterns(DEFAULT_PATTERNS_PATH)
