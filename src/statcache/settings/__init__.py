"""Environment settings."""

from statcache.settings.app import AppSettings, get_settings


__all__ = ["AppSettings", "get_settings"]
