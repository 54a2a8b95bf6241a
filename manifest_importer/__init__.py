"""Spreadsheet importer for delivery and logistics manifests."""

__version__ = "0.3.0"
