"""Server-side verification of rewarded-ad callbacks."""

from __future__ import annotations

__all__: list[str] = []
