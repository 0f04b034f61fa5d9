"""Scope preset models and loader exports."""

from .loader import ScopeLoadError, ScopeLoader, ScopeOverride
from .models import ScopePreset

__all__ = [
    "ScopeLoadError",
    "ScopeLoader",
    "ScopeOverride",
    "ScopePreset",
]
