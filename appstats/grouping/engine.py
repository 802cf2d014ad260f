"""
Identity resolution: assign a semantic group to an observed executable.
"""
import logging
import re
from typing import List, Optional, Union

from ..config import now_ms
from ..db.base import Store
from ..models import MatchType
from .matchers import GroupMatcher, ManualRuleMatcher, ResolutionContext, default_matchers

logger = logging.getLogger(__name__)


class IdentityResolver:
    """
    Runs the matcher cascade for an executable.

    Stages, first hit wins: manual rules, known-app dictionary, catalog
    library path, fuzzy match against existing group names, sibling
    family. The manual-rule cache lives on this instance and is rebuilt
    lazily after invalidate_cache().
    """

    def __init__(self, store: Store, matchers: Optional[List[GroupMatcher]] = None) -> None:
        self.store = store
        self.matchers = matchers if matchers is not None else default_matchers()

    def invalidate_cache(self) -> None:
        for matcher in self.matchers:
            if isinstance(matcher, ManualRuleMatcher):
                matcher.invalidate()

    def resolve(self, exe_name: str, exe_path: Optional[str] = None,
                now: Optional[int] = None) -> Optional[int]:
        """Return the group id for exe_name, or None if nothing matches."""
        ctx = ResolutionContext(
            exe_name=exe_name,
            exe_path=exe_path,
            store=self.store,
            now=now if now is not None else now_ms(),
        )
        for matcher in self.matchers:
            group_id = matcher.try_resolve(ctx)
            if group_id is not None:
                logger.debug("%s resolved by %s -> group %s", exe_name, matcher.name, group_id)
                return group_id
        return None

    def reanalyze_groups(self) -> int:
        """
        Re-run resolution for every app not pinned by a manual rule.

        Apps whose current group has a manual rule are left alone. Everything
        else gets the cascade's answer, including None (ungrouped).
        Returns the number of apps whose group changed.
        """
        self.invalidate_cache()
        changed = 0

        for app in self.store.list_apps():
            if app.group_id is not None and self.store.count_manual_rule_for_group(app.group_id) > 0:
                continue

            group_id = self.resolve(app.exe_name, app.exe_path)
            self.store.set_app_group(app.id, group_id)
            if group_id != app.group_id:
                changed += 1

        logger.info("Reanalyzed groups: %d apps changed", changed)
        return changed

    # Manual grouping

    def create_manual_group(self, name: str) -> int:
        """Create a user-defined group, or return the existing one by that name."""
        name = name.strip()
        if not name:
            raise ValueError("Group name must not be empty")
        existing = self.store.find_group_by_name(name)
        if existing:
            return existing.id
        return self.store.create_group(name, True, now_ms())

    def add_manual_rule(self, pattern: str, group_id: int,
                        match_type: Union[MatchType, str] = MatchType.EXACT) -> int:
        """Persist a manual rule and drop the cached rules so it applies immediately."""
        try:
            kind = MatchType(match_type)
        except ValueError:
            raise ValueError(f"Unknown match type: {match_type!r}") from None
        if not pattern:
            raise ValueError("Rule pattern must not be empty")
        if kind is MatchType.REGEX:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid regex {pattern!r}: {e}") from None

        rule_id = self.store.create_rule(group_id, pattern, kind, manual=True)
        self.invalidate_cache()
        return rule_id
