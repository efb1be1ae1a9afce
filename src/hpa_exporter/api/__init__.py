"""
HTTP surface of the exporter
"""

from .server import APIServer, ROOT_DOC

__all__ = ["APIServer", "ROOT_DOC"]
