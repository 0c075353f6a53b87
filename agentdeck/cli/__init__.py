"""Command-line interface for talking to a local assistant server."""
