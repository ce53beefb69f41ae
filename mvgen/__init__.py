"""Music video generator package.

This package turns a song into a beat-synchronised animated music video
through a series of orchestrated nodes.
"""

from .pipeline import MusicVideoGenerator  # noqa: F401

__all__ = ["MusicVideoGenerator"]
