"""S3-backed artifact storage."""
