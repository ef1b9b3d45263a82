"""Settings and agent persistence."""
