"""Textual review panel for scanned and rewritten text."""
