"""WSGI middleware that allows or blocks requests by client country and IP block."""

__version__ = "0.1.0"