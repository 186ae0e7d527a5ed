"""
Report module: operator briefs + HTTP surface.

Usage:
    from report import create_app, generate_brief
    app = create_app(store, gate, health)
"""

from __future__ import annotations

from report.brief import generate_brief
from report.server import create_app, start_server

__all__ = ["create_app", "generate_brief", "start_server"]
