"""Grouping of related executables into semantic app groups."""
from .engine import IdentityResolver
from .matchers import normalized_distance

__all__ = ['IdentityResolver', 'normalized_distance']
