"""Queries behind the internal lookup, handle, ingestion and rollup services."""
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models
from .schemas import (
    AnalyticsEvent,
    Granularity,
    RollupBucket,
    RollupOut,
    RollupRequest,
    TagState,
    TagStatus,
)

# Statuses older rows may carry, folded onto the four the redirect path knows
LEGACY_STATUS = {
    "claimed": TagStatus.active,
    "claimable": TagStatus.unclaimed,
    "archived": TagStatus.suspended,
    "retired": TagStatus.suspended,
}


def _status(raw: Optional[str]) -> TagStatus:
    raw = (raw or "").strip().lower()
    try:
        return TagStatus(raw)
    except ValueError:
        return LEGACY_STATUS.get(raw, TagStatus.unclaimed)


def find_tag(db: Session, token: str) -> Optional[models.Tag]:
    """A token matches either the printed public token or the chip UID."""
    token = token.strip()
    return db.query(models.Tag).filter(
        or_(models.Tag.public_token == token, models.Tag.chip_uid == token)
    ).first()


def lookup_tag_state(db: Session, token: str) -> Optional[TagState]:
    tag = find_tag(db, token)
    if tag is None:
        return None
    return TagState(
        id=tag.id,
        status=_status(tag.status),
        owner_id=tag.owner_id,
        target_type=tag.target_type or "profile",
        target_url=tag.target_url,
        target_profile_slug=tag.target_profile_slug,
    )


def handle_for(db: Session, owner_id: str) -> Optional[str]:
    account = db.get(models.Account, owner_id)
    return account.handle if account else None


def tag_exists(db: Session, tag_id: str) -> bool:
    return db.get(models.Tag, tag_id) is not None


def insert_event(db: Session, event: AnalyticsEvent) -> models.TagEvent:
    row = models.TagEvent(
        tag_id=event.tag_id,
        event_type=event.event_type.value,
        country=event.country,
        device=event.device.value if event.device else None,
        referrer=event.referrer,
        ip_hash=event.ip_hash,
        utm=event.utm or {},
        event_metadata=event.metadata,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def bucket_start(ts: datetime, granularity: Granularity) -> datetime:
    if granularity == Granularity.hour:
        return ts.replace(minute=0, second=0, microsecond=0)
    return ts.replace(hour=0, minute=0, second=0, microsecond=0)


def rollup(db: Session, req: RollupRequest) -> RollupOut:
    """Per-bucket event counts for every tag an account owns, in [start, end).

    Grouping is done here rather than in SQL so the same code works on SQLite
    and Postgres. Bucket timestamps are UTC.
    """
    start, end = _naive_utc(req.start), _naive_utc(req.end)
    rows = db.query(models.TagEvent.created_at, models.TagEvent.event_type)\
        .join(models.Tag, models.Tag.id == models.TagEvent.tag_id)\
        .filter(models.Tag.owner_id == req.owner_id,
                models.TagEvent.created_at >= start,
                models.TagEvent.created_at < end)\
        .all()

    counts: Dict[datetime, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for created_at, event_type in rows:
        counts[bucket_start(created_at, req.granularity)][event_type] += 1

    buckets: List[RollupBucket] = [
        RollupBucket(bucket_start=key.replace(tzinfo=timezone.utc), counts=dict(counts[key]))
        for key in sorted(counts)
    ]
    return RollupOut(owner_id=req.owner_id, granularity=req.granularity, buckets=buckets)
