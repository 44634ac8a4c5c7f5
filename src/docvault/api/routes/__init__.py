"""
API route handlers.
"""

from docvault.api.routes import documentation, health

__all__ = [
    "documentation",
    "health",
]
