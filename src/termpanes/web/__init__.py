"""Web module - host API"""

from .server import WebServer
from .app import create_app, main

__all__ = ["WebServer", "create_app", "main"]
