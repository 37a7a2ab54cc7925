"""
ChatGuard - ingestion, envelope encryption and threat classification for chat sources.
"""

from .__version__ import __version__

__all__ = ["__version__"]
