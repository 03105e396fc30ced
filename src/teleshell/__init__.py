"""teleshell - run chat requests as shell commands through a tool server."""

__version__ = "0.1.0"

__all__ = ["__version__"]
