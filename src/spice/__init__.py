"""Spice Labs CLI: survey artifacts and upload artifact dependency graphs."""

__version__ = "0.1.0"

__all__ = ["__version__"]
