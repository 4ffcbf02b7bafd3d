"""Server Status Monitor - probe, detect, track incidents and notify."""

__version__ = "0.1.0"
