"""Configuration loading and schema."""

from storyweave.config.loader import load_config
from storyweave.config.schema import AppConfig, AppConfigRoot

__all__ = ["AppConfig", "AppConfigRoot", "load_config"]
