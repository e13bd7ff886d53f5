"""Initialize the LLM backend from environment variables.

Credentials are per organization (see model_config), so the only process-wide
setup is tracing. Call once at worker start-up.
"""
import logging
import os

import litellm

logger = logging.getLogger(__name__)


def init_llm() -> None:
    """Register Langfuse callbacks when LANGFUSE_PUBLIC_KEY is set."""
    if os.environ.get("LANGFUSE_PUBLIC_KEY"):
        litellm.success_callback = ["langfuse"]
        litellm.failure_callback = ["langfuse"]
        logger.info("LLM tracing: Langfuse callbacks enabled")
    else:
        logger.info("LLM tracing: disabled (LANGFUSE_PUBLIC_KEY not set)")
