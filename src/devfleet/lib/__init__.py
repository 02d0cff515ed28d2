"""Shared library code for DevFleet."""
