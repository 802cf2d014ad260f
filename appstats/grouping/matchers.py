"""
Group matching strategies.

Each matcher is one stage of the resolution cascade. The engine calls
try_resolve() on each in order and stops at the first group id.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import cached_property
from typing import Dict, List, Optional, Pattern, Tuple

from rapidfuzz.distance import Levenshtein

from ..config import CATALOG_PATH_PATTERN
from ..db.base import Store
from ..models import MatchType
from .rules import (
    KNOWN_APP_RULES,
    KnownAppRule,
    normalize_catalog_name,
    strip_exe_suffix,
    strip_version_suffixes,
    title_case_family,
)

logger = logging.getLogger(__name__)

CATALOG_MAX_DISTANCE = 0.1
FUZZY_MAX_DISTANCE = 0.25
MIN_CANDIDATE_LENGTH = 3
MIN_SIBLINGS = 2


def normalized_distance(a: str, b: str) -> float:
    """Edit distance divided by the longer length; 0.0 for two empty strings."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 0.0
    return Levenshtein.distance(a, b) / max_len


@dataclass
class ResolutionContext:
    """One executable being resolved, plus what every stage needs."""
    exe_name: str
    exe_path: Optional[str]
    store: Store
    now: int

    @cached_property
    def lower_full(self) -> str:
        return self.exe_name.lower()

    @cached_property
    def lower_stem(self) -> str:
        return strip_exe_suffix(self.lower_full)

    @cached_property
    def candidate(self) -> Optional[str]:
        """Stem with version suffixes stripped, or None if too short to be useful."""
        stripped = strip_version_suffixes(self.lower_stem).lower()
        if len(stripped) < MIN_CANDIDATE_LENGTH:
            return None
        return stripped

    def ensure_group(self, name: str) -> int:
        """Id of the group with this name, creating an auto group if absent."""
        existing = self.store.find_group_by_name(name)
        if existing:
            return existing.id
        group_id = self.store.create_group(name, False, self.now)
        logger.info("Created group %r (%s) for %s", name, group_id, self.exe_name)
        return group_id


class GroupMatcher(ABC):
    """A single stage of the resolution cascade."""

    name: str = "matcher"

    @abstractmethod
    def try_resolve(self, ctx: ResolutionContext) -> Optional[int]:
        """Return a group id, or None to defer to the next stage."""
        pass


class ManualRuleMatcher(GroupMatcher):
    """
    User rules. Exact patterns go in a dict keyed by lowercased pattern;
    prefix and regex rules are tried afterwards in rule order.
    """

    name = "manual"

    def __init__(self) -> None:
        self._exact: Dict[str, int] = {}
        self._patterns: List[Tuple[Pattern[str], int]] = []
        self._built = False

    def invalidate(self) -> None:
        self._exact.clear()
        self._patterns.clear()
        self._built = False

    def _build(self, store: Store) -> None:
        if self._built:
            return
        for rule in store.list_manual_rules():
            pattern = rule.pattern.lower()
            if rule.match_type is MatchType.EXACT:
                self._exact.setdefault(pattern, rule.group_id)
            elif rule.match_type is MatchType.PREFIX:
                self._patterns.append((re.compile("^" + re.escape(pattern)), rule.group_id))
            else:
                try:
                    self._patterns.append((re.compile(rule.pattern, re.IGNORECASE), rule.group_id))
                except re.error:
                    logger.warning("Skipping invalid regex rule %s: %r", rule.id, rule.pattern)
        self._built = True

    def try_resolve(self, ctx: ResolutionContext) -> Optional[int]:
        self._build(ctx.store)
        for key in (ctx.lower_full, ctx.lower_stem):
            if key in self._exact:
                return self._exact[key]
        for pattern, group_id in self._patterns:
            if pattern.search(ctx.lower_full) or pattern.search(ctx.lower_stem):
                return group_id
        return None


class KnownAppMatcher(GroupMatcher):
    """Curated dictionary of common applications."""

    name = "known_app"

    def __init__(self, rules: Optional[List[KnownAppRule]] = None) -> None:
        self.rules = rules if rules is not None else KNOWN_APP_RULES

    def try_resolve(self, ctx: ResolutionContext) -> Optional[int]:
        for group_name, patterns in self.rules:
            for pattern in patterns:
                if pattern.search(ctx.lower_full) or pattern.search(ctx.lower_stem):
                    return ctx.ensure_group(group_name)
        return None


class CatalogPathMatcher(GroupMatcher):
    """
    Executables installed under a catalog library folder are matched to the
    catalog-imported identity whose display name is closest to the folder name.
    """

    name = "catalog_path"

    def try_resolve(self, ctx: ResolutionContext) -> Optional[int]:
        if not ctx.exe_path:
            return None
        match = CATALOG_PATH_PATTERN.search(ctx.exe_path)
        if not match:
            return None

        folder = normalize_catalog_name(match.group(1))
        best = None
        best_dist = 0.0
        for app in ctx.store.list_catalog_apps():
            dist = normalized_distance(folder, normalize_catalog_name(app.display_name))
            if dist <= CATALOG_MAX_DISTANCE and (best is None or dist < best_dist):
                best, best_dist = app, dist

        if best is None:
            return None
        if best.group_id is not None:
            return best.group_id

        group_id = ctx.ensure_group(best.display_name)
        ctx.store.set_app_group(best.id, group_id)
        return group_id


class FuzzyGroupMatcher(GroupMatcher):
    """Version-stripped name compared against every existing group name."""

    name = "fuzzy_group"

    def try_resolve(self, ctx: ResolutionContext) -> Optional[int]:
        candidate = ctx.candidate
        if candidate is None:
            return None

        best_id = None
        best_dist = 0.0
        for group in ctx.store.list_groups():
            dist = normalized_distance(candidate, group.name.lower())
            if dist <= FUZZY_MAX_DISTANCE and (best_id is None or dist < best_dist):
                best_id, best_dist = group.id, dist
        return best_id


class SiblingFamilyMatcher(GroupMatcher):
    """
    Several other executables share the stripped name: group them as a family.

    Only the identity being resolved is left out; the same executable
    installed at another path counts as a sibling.
    """

    name = "sibling_family"

    def try_resolve(self, ctx: ResolutionContext) -> Optional[int]:
        candidate = ctx.candidate
        if candidate is None:
            return None

        siblings = [
            app for app in ctx.store.list_app_identities_by_prefix(candidate)
            if (app.exe_name.lower(), app.exe_path) != (ctx.lower_full, ctx.exe_path)
        ]
        if len(siblings) < MIN_SIBLINGS:
            return None
        return ctx.ensure_group(title_case_family(candidate))


def default_matchers() -> List[GroupMatcher]:
    return [
        ManualRuleMatcher(),
        KnownAppMatcher(),
        CatalogPathMatcher(),
        FuzzyGroupMatcher(),
        SiblingFamilyMatcher(),
    ]
