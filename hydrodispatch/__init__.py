"""Hydrothermal unit commitment, economic dispatch and zonal pricing."""

__version__ = "0.1.0"
