"""
Quote Engine Tools - domain tools built on the utils layer.

Submodules:
- quotes: Supplier quote analysis, batch processing and comparison
"""

from tools import quotes

__all__ = [
    "quotes",
]
