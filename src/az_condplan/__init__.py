"""Conditional deployment template planner."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("az-condplan")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
