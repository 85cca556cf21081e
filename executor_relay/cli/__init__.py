"""Command line interface for the relay client."""
