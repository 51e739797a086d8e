"""Horseshoe shrinkage demonstration: simulate, fit, compare."""

__version__ = "0.1.0"
