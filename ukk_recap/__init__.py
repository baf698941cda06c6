"""Scoring and recap core for the UKK competency exam."""

__version__ = "0.1.0"
