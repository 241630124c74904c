"""
Configuration management for the pipeline.

Contains the Pydantic settings shared by every pipeline component across
local-dev, aws-mock, and aws-prod deployment modes.
"""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
