"""
LLM (Large Language Model) initialisation.
"""

import logging
import os
from typing import Optional

from langchain_openai import ChatOpenAI

from ebf.config import LLM_TIMEOUT_SECONDS, MODEL_NAME

logger = logging.getLogger(__name__)


def init_llm() -> Optional[ChatOpenAI]:
    """Return a ChatOpenAI instance, or None when no API key is configured."""
    if not os.getenv("OPENAI_API_KEY"):
        logger.warning("OPENAI_API_KEY is not set, AI summaries are disabled")
        return None
    llm = ChatOpenAI(model=MODEL_NAME, temperature=0.2, timeout=LLM_TIMEOUT_SECONDS)
    print(f"[init] Using LLM model: {MODEL_NAME}")
    return llm
