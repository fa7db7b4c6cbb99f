import os
from datetime import datetime, timedelta, timezone

import models
from sqlalchemy import select
from sqlalchemy.orm import Session

RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", 7))

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def window_start(now: datetime | None = None, days: int = RETENTION_DAYS) -> datetime:
    return (now or utcnow()) - timedelta(days=days)

def insert_visit(db: Session, screen_width: int, screen_height: int, context: str,
                 visit_time: datetime | None = None) -> models.Visit:
    visit = models.Visit(
        visit_time=visit_time or utcnow(),
        screen_width=screen_width,
        screen_height=screen_height,
        context=context or models.UNKNOWN_CONTEXT,
    )
    db.add(visit)
    db.commit()
    db.refresh(visit)
    return visit

def insert_link(db: Session, visit_id: int, url: str, text: str) -> models.TrackedLink:
    link = models.TrackedLink(
        visit_id=visit_id,
        url=url[:models.MAX_URL_LENGTH],
        text=text[:models.MAX_TEXT_LENGTH],
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link

def _tracked_links_query(db: Session, now: datetime | None, days: int):
    return (
        db.query(
            models.Visit.id.label("visit_id"),
            models.Visit.visit_time,
            models.Visit.screen_width,
            models.Visit.screen_height,
            models.Visit.context,
            models.TrackedLink.id.label("link_id"),
            models.TrackedLink.url,
            models.TrackedLink.text,
        )
        .join(models.TrackedLink, models.TrackedLink.visit_id == models.Visit.id)
        .filter(models.Visit.visit_time >= window_start(now, days))
    )

def get_tracked_links(db: Session, skip: int = 0, limit: int | None = None,
                      now: datetime | None = None, days: int = RETENTION_DAYS) -> list:
    query = _tracked_links_query(db, now, days).order_by(
        models.Visit.visit_time.desc(),
        models.Visit.id.desc(),
        models.TrackedLink.id.asc(),
    )
    if skip:
        query = query.offset(skip)
    if limit is not None:
        query = query.limit(limit)
    return query.all()

def count_tracked_links(db: Session, now: datetime | None = None, days: int = RETENTION_DAYS) -> int:
    return _tracked_links_query(db, now, days).count()

def delete_orphaned_links(db: Session) -> int:
    deleted = (
        db.query(models.TrackedLink)
        .filter(models.TrackedLink.visit_id.not_in(select(models.Visit.id)))
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted

def delete_old_visits(db: Session, now: datetime | None = None, days: int = RETENTION_DAYS) -> int:
    threshold = window_start(now, days)
    expired_ids = select(models.Visit.id).where(models.Visit.visit_time < threshold)
    # No storage-level cascade: remove the children explicitly in the same transaction
    (
        db.query(models.TrackedLink)
        .filter(models.TrackedLink.visit_id.in_(expired_ids))
        .delete(synchronize_session=False)
    )
    deleted = (
        db.query(models.Visit)
        .filter(models.Visit.visit_time < threshold)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
