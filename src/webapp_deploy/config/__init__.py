"""
Configuration for the deploy tooling.

Contains the Pydantic settings class. Settings are built once by the entry
point and handed to every collaborator.
"""
from webapp_deploy.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
