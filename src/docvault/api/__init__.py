"""
DocVault API Module.

Read-only REST surface: health, serving entry resolution, and content.
"""

from docvault.api.app import create_app

__all__ = ["create_app"]
