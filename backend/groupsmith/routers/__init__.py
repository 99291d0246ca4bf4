"""Application routers package.

This module exposes the individual router modules for easier imports.
"""

__all__ = ['grouping']
