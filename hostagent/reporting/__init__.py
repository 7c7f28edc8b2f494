"""Reporting: ship metrics and drained process output to the controller."""
