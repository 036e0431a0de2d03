"""
TCP connection management module.

Handles the TCP server and connection lifecycle for UPS devices.
"""
from .tcp_connection import TCPConnection
from .tcp_server import TCPServer

__all__ = [
    "TCPConnection",
    "TCPServer",
]
