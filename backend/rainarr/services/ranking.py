"""
Result ranking: choose the single best candidate for a query.

Everything here is pure; the database lookups that feed it live in
services/search_service.py.
"""
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Pattern, Set
from loguru import logger

from rainarr.models.result import STATE_DELETED_FROM_CLIENT


@dataclass(frozen=True)
class QueryRules:
    """A query's effective settings after falling back to its group."""
    search_query: str
    prowlarr_tag: Optional[str] = None
    indexers: Optional[str] = None
    target_quality: Optional[str] = None
    search_frequency: Optional[int] = None
    includes_regex: Optional[str] = None
    excludes_regex: Optional[str] = None
    group_name: Optional[str] = None


def _inherit(own, group, field: str):
    value = getattr(own, field, None)
    if value not in (None, ""):
        return value
    if group is None:
        return None
    value = getattr(group, field, None)
    return None if value == "" else value


def resolve_query_rules(query: Any) -> QueryRules:
    """Merge a query with its group defaults (the query's own value wins when set)."""
    group = getattr(query, "query_group", None)
    return QueryRules(
        search_query=query.search_query,
        prowlarr_tag=_inherit(query, group, "prowlarr_tag"),
        indexers=getattr(group, "indexers", None) or None,
        target_quality=_inherit(query, group, "target_quality"),
        search_frequency=_inherit(query, group, "search_frequency"),
        includes_regex=_inherit(query, group, "includes_regex"),
        excludes_regex=_inherit(query, group, "excludes_regex"),
        group_name=getattr(group, "name", None),
    )


def score_result(seeders: int, leechers: int) -> float:
    """
    Swarm health score.

    Seeder count dominates; the seeder/leecher ratio term separates
    otherwise similar swarms. Zero-seeder results are half-weighted.
    """
    seeders = max(seeders or 0, 0)
    leechers = max(leechers or 0, 0)
    weight = 1.0 if seeders >= 1 else 0.5
    return weight * (2 * seeders + (seeders / (leechers + 1)) * (seeders + leechers))


def _compile(pattern: Optional[str]) -> Optional[Pattern]:
    if not pattern:
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Ignoring invalid title filter {pattern!r}: {e}")
        return None


def title_matches(title: str, includes_regex: Optional[str], excludes_regex: Optional[str]) -> bool:
    """Include pattern must match (if set) and exclude pattern must not (if set)."""
    include = _compile(includes_regex)
    exclude = _compile(excludes_regex)
    title = title or ""
    if include is not None and not include.search(title):
        return False
    if exclude is not None and exclude.search(title):
        return False
    return True


def filter_candidates(
    candidates: Iterable[Any],
    rules: QueryRules,
    known_hashes: Set[str],
) -> List[Any]:
    """Keep results that can be added: hashed, not deleted from the client, not yet known, title filters passed."""
    include = _compile(rules.includes_regex)
    exclude = _compile(rules.excludes_regex)
    kept = []
    for result in candidates:
        if result.state == STATE_DELETED_FROM_CLIENT:
            continue
        if not result.info_hash:
            continue
        if result.info_hash.lower() in known_hashes:
            continue
        title = result.title or ""
        if include is not None and not include.search(title):
            continue
        if exclude is not None and exclude.search(title):
            continue
        kept.append(result)
    return kept


def rank_candidates(candidates: Iterable[Any]) -> List[Any]:
    """Sort by score, best first; ties keep their original order."""
    return sorted(candidates, key=lambda r: score_result(r.seeders, r.leechers), reverse=True)


def select_best(
    candidates: Iterable[Any],
    rules: QueryRules,
    known_hashes: Iterable[str] = (),
) -> Optional[Any]:
    """The best not-yet-added candidate, or None."""
    known = {h.lower() for h in known_hashes if h}
    ranked = rank_candidates(filter_candidates(candidates, rules, known))
    if not ranked:
        logger.debug(f"No eligible results for '{rules.search_query}'")
        return None
    best = ranked[0]
    logger.debug(
        f"Best result for '{rules.search_query}': {best.title} "
        f"(S:{best.seeders} L:{best.leechers}, score {score_result(best.seeders, best.leechers):.1f})"
    )
    return best
