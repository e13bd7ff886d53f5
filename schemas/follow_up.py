"""Follow-up scheduling and processing schemas."""
from typing import Optional

from pydantic import BaseModel


class FollowUpContext(BaseModel):
    """What the message writer knows about a scheduled follow-up."""

    context_for_message: str = ""
    urgency_hook: Optional[str] = None
    customer_name: Optional[str] = None
    matched_pattern: Optional[str] = None


class ProcessResult(BaseModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
