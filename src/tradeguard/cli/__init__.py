"""Command line interface for tradeguard."""
