"""
FastAPI dependencies.

The marketplace is built once per process so every request shares the same
store and lock registry. Tests replace it with `app.dependency_overrides`.
"""

from __future__ import annotations

from functools import lru_cache

from services.marketplace import Marketplace, build_marketplace


@lru_cache(maxsize=1)
def get_marketplace() -> Marketplace:
    return build_marketplace()


__all__ = ["get_marketplace"]
