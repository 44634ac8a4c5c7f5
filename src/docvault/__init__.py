"""
DocVault - Versioned documentation artifact storage.

Publishes generated documentation trees into an object store, decides
which generation to serve, and reclaims storage held by superseded or
abandoned generations.
"""

__version__ = "0.1.0"

# API module is available but not exported by default
# Import explicitly: from docvault.api import create_app

__all__ = []
