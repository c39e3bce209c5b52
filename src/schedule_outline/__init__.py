"""Hierarchical schedule outline: dotted numbering, dependency remapping and roll-up."""

__version__ = "0.1.0"
