"""ASGI application instance built by the factory."""

from .factory import create_app

app = create_app()
