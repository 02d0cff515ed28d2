"""Pydantic models for DevFleet configuration, state and provider data."""
