"""Kubernetes operator for NooBaa systems."""

__version__ = "0.1.0"
