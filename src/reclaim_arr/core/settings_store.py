"""Key/value settings rows holding sync status."""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from reclaim_arr.db.models import Setting, utcnow

LAST_SYNC_AT = "qbittorrent_last_sync_at"
LAST_SYNC_RESULT = "qbittorrent_last_sync_result"


def get_value(session: Session, key: str) -> Optional[str]:
    setting = session.query(Setting).filter_by(setting_key=key).first()
    return setting.setting_value if setting else None


def set_value(session: Session, key: str, value: Optional[str], setting_type: str = "string") -> Setting:
    setting = session.query(Setting).filter_by(setting_key=key).first()
    if setting is None:
        setting = Setting(setting_key=key)
        session.add(setting)
    setting.setting_value = value
    setting.setting_type = setting_type
    setting.updated_at = utcnow()
    return setting


def record_torrent_sync(session: Session, result: Dict[str, Any], synced_at: Optional[datetime] = None) -> None:
    """Store the timestamp and counters of the last torrent sync."""
    synced_at = synced_at or utcnow()
    set_value(session, LAST_SYNC_AT, synced_at.isoformat(), "datetime")
    set_value(session, LAST_SYNC_RESULT, json.dumps(result), "json")


def last_torrent_sync(session: Session) -> Dict[str, Any]:
    """Return {"synced_at": datetime | None, "result": dict | None}."""
    raw_at = get_value(session, LAST_SYNC_AT)
    raw_result = get_value(session, LAST_SYNC_RESULT)
    return {
        "synced_at": datetime.fromisoformat(raw_at) if raw_at else None,
        "result": json.loads(raw_result) if raw_result else None,
    }
