"""FastAPI server adapter for swe-orchestrator.

Business logic lives in `swe_orchestrator.orchestrator.*`; this package only
handles routing, CORS and request validation.
"""

from __future__ import annotations

__all__ = ["create_app"]

from swe_orchestrator.server.app import create_app
