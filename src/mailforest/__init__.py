"""mailforest - incremental, online email threading.

Builds and maintains a forest of conversation threads from records delivered
in arbitrary order by an external index backend.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
