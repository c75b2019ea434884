"""Tracker retention rules."""

from typing import Dict, List, Optional
from urllib.parse import urlparse
import logging

from sqlalchemy.orm import Session

from reclaim_arr.db.models import TorrentStat, TrackerRule
from reclaim_arr.exceptions import EntityNotFoundError

logger = logging.getLogger(__name__)


def extract_domain(tracker_url: Optional[str]) -> str:
    """Host part of a tracker announce URL, lower-cased; empty when unknown."""
    if not tracker_url:
        return ""
    return (urlparse(tracker_url).hostname or "").lower()


class TrackerRuleCache:
    """Find-or-create cache for TrackerRules, scoped to one sync pass."""

    def __init__(self, session: Session):
        self.session = session
        self._rules: Dict[str, TrackerRule] = {}
        self.created = 0

    def ensure(self, domain: str) -> Optional[TrackerRule]:
        if not domain:
            return None

        if domain in self._rules:
            return self._rules[domain]

        rule = self.session.query(TrackerRule).filter_by(tracker_domain=domain).first()
        if rule is None:
            rule = TrackerRule(
                tracker_domain=domain,
                min_seed_time_hours=0,
                min_ratio=0.0,
                is_auto_detected=True,
            )
            self.session.add(rule)
            self.created += 1
            logger.info(f"Auto-detected new tracker: {domain}")

        self._rules[domain] = rule
        return rule


def list_rules(session: Session) -> List[TrackerRule]:
    return session.query(TrackerRule).order_by(TrackerRule.tracker_domain).all()


def update_rule(
    session: Session,
    rule_id: int,
    min_seed_time_hours: Optional[int] = None,
    min_ratio: Optional[float] = None,
) -> TrackerRule:
    """Apply operator-chosen thresholds; the rule stops being auto-detected."""
    rule = session.get(TrackerRule, rule_id)
    if rule is None:
        raise EntityNotFoundError("TrackerRule", rule_id)

    if min_seed_time_hours is not None:
        rule.min_seed_time_hours = min_seed_time_hours
    if min_ratio is not None:
        rule.min_ratio = min_ratio
    rule.is_auto_detected = False
    return rule


def is_eligible(stat: TorrentStat, rule: Optional[TrackerRule]) -> bool:
    """True when the torrent has met its tracker's seeding obligations."""
    if rule is None:
        return True
    return (
        stat.seed_time_seconds >= rule.min_seed_time_hours * 3600
        and stat.ratio >= rule.min_ratio
    )
