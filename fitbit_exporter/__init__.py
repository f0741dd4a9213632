"""Fitbit heart-rate exporter: mirrors heart-rate data into PostgreSQL."""

__version__ = "0.1.0"
