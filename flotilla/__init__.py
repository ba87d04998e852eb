"""Flotilla - operator control surface for app machines."""

__version__ = "0.1.0"
