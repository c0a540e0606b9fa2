"""Conversion, filtering and sharing of infrastructure-as-code scan results."""

__version__ = "0.1.0"