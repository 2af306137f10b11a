"""Docker Fleet: agentless Docker deployment management over SSH."""

__version__ = "0.1.0"
