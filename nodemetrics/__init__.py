"""Host metric collectors and parsers for Linux /proc, /sys and logind."""

__version__ = "0.1.0"