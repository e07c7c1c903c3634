"""Delivery pipeline orchestrator: build, publish and roll out container images."""

__version__ = "0.1.0"
