"""
Configuration module for sync-work.
"""
from .settings import Settings

__all__ = [
    'Settings',
]
