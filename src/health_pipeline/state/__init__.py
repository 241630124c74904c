"""Pipeline run state tracking."""
