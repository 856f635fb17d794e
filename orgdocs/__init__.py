"""Aggregate an organization's repository documentation into one static site."""

__version__ = "0.1.0"
