"""
Quote Engine Utils - Modular utility functions.

Submodules:
- core: Logging, errors, and JSON repair
- llm: LLM providers (Anthropic, Gemini, OpenAI) with retries
- storage: MinIO storage operations (S3-compatible)
- document: PDF and spreadsheet text extraction with OCR fallback
- db: PostgreSQL / mock store for quotes, suppliers and comparisons
"""

from utils import core
from utils import llm
from utils import storage
from utils import document

__all__ = [
    "core",
    "llm",
    "storage",
    "document",
]
