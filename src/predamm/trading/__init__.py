"""Trade settlement against persisted markets."""
