"""tradeguard - trust-based procedural security for peer-to-peer barter trades."""

__version__ = "0.1.0"
