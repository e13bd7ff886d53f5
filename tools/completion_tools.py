"""AI completion client built on LiteLLM.

The service contract is plain text in, plain text out; JSON validation of
the answer belongs to the caller.
"""
import logging
from typing import Optional

import litellm

from model_config import AICredentials

logger = logging.getLogger(__name__)


async def complete(
    prompt: str,
    credentials: AICredentials,
    max_tokens: int = 1500,
    timeout: Optional[float] = None,
) -> str:
    """Send a single-turn prompt and return the text of the first choice."""
    response = await litellm.acompletion(
        model=credentials.model,
        messages=[{"role": "user", "content": prompt}],
        api_key=credentials.api_key,
        max_tokens=max_tokens,
        timeout=timeout,
    )
    content = response.choices[0].message.content or ""
    logger.debug("Completion from %s: %d chars", credentials.model, len(content))
    return content.strip()
