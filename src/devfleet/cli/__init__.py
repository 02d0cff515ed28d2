"""Command line interface for DevFleet."""
