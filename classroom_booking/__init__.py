"""Classroom booking: availability rules, cleanup sweeper and booking API."""

__version__ = "0.1.0"
