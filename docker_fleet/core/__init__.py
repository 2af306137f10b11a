"""Core transport, execution and pipeline building blocks."""
