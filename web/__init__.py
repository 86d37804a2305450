"""HTTP API for isoforge.

Routes are thin wrappers over ``isoforge.builds`` and ``isoforge.catalog``;
the application object is built by ``web.app.create_app``.
"""

from web.app import app, create_app

__all__ = ["app", "create_app"]
