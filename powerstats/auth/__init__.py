"""
Authentication package.

Exports the BearerAuth dependency class used by FastAPI route handlers.

CHANGELOG:
- 2026-03-12: Token parsing lives in powerstats.config (STORY-113)
- 2026-02-28: Tokens map to locations instead of devices (STORY-103)

TODO:
- None
"""

from powerstats.auth.bearer import BearerAuth

__all__ = ["BearerAuth"]
