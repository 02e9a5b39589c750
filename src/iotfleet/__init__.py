"""Simulate a fleet of IoT nodes submitting transactions with cached TAPoS."""

__version__ = "0.1.0"
