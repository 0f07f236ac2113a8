"""
Stream Viewer Server Modules

Local REST control server for dashboards.
"""

from .control_server import ControlServer

__all__ = [
    "ControlServer",
]
