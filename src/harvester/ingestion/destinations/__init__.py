"""Built-in destination plugins."""

from .api import GenericApiDestination
from .filesystem import FileSystemDestination

__all__ = ["FileSystemDestination", "GenericApiDestination"]
