"""Static scanner for security anti-patterns in source trees."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("sourceguard")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.1.0-dev"

__all__ = ["__version__"]
