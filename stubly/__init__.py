"""
Stubly client data layer.

Dual-mode (online / offline) authentication and a local mirror of the
user's remote media catalogue.  Entry point: :class:`stubly.context.AppContext`.
"""

__version__ = "0.1.0"
