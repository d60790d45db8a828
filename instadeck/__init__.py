"""Instapaper-protocol bridge between e-reader devices and a Readeck server."""

__version__ = "0.1.0"
