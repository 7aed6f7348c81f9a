"""
Infrastructure Package.

Provides the renderer pool shared by the page fetches of one crawl, and the
isolated renderer used by the accessibility auditor.
"""

from .renderer_pool import (
    RendererPool,
    PoolStatus,
    isolated_renderer,
)

__all__ = [
    "RendererPool",
    "PoolStatus",
    "isolated_renderer",
]
