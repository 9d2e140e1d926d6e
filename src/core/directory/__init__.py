"""
Справочники клиентов и адресов.
"""

from src.core.directory.models import Client, Destination

__all__ = [
    "Client",
    "Destination",
]
