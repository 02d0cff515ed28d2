"""DevFleet CLI commands."""
