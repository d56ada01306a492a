"""Command-line interface for Dynserv."""
