"""hubsync HTTP API layer.

Usage
-----
Create and run the application::

    from hubsync.api import create_app

    app = create_app()              # health-only mode
    app = create_app(dependencies)  # webhook and operator endpoints

"""

from hubsync.api.app import create_app

__all__ = ["create_app"]
