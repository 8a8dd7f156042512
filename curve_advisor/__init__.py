"""Curve advisor - recommended speeds for upcoming road curvature."""

__version__ = "0.1.0"
