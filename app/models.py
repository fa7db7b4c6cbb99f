from database import Base
from sqlalchemy import Column, DateTime, Integer, String

MAX_URL_LENGTH = 2083
MAX_TEXT_LENGTH = 500
UNKNOWN_CONTEXT = "Unknown"


class Visit(Base):
    __tablename__ = "atf_visits"

    id = Column(Integer, primary_key=True, index=True)
    visit_time = Column(DateTime(timezone=True), nullable=False, index=True)
    screen_width = Column(Integer, nullable=False)
    screen_height = Column(Integer, nullable=False)
    context = Column(String(64), nullable=False, default=UNKNOWN_CONTEXT)


class TrackedLink(Base):
    __tablename__ = "atf_links"

    id = Column(Integer, primary_key=True, index=True)
    # No ForeignKey: cascade is not enforced, retention prunes orphans instead
    visit_id = Column(Integer, nullable=False, index=True)
    url = Column(String(MAX_URL_LENGTH), nullable=False)
    text = Column(String(MAX_TEXT_LENGTH), nullable=True)
