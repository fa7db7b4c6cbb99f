import re
from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict

_LINK_FIELD = re.compile(r"^links\[(\d+)\]\[(\w+)\]$")


class TrackerConfig(BaseModel):
    ajax_url: str
    action: str
    nonce: str

class TrackingData(BaseModel):
    message: str
    visit_id: int | None = None

class TrackingEnvelope(BaseModel):
    success: bool
    data: TrackingData

class ReportRow(BaseModel):
    visit_id: int
    visit_time: datetime
    screen_width: int
    screen_height: int
    context: str
    link_id: int
    url: str
    text: str | None

    model_config = ConfigDict(from_attributes=True)

class PaginatedReport(BaseModel):
    items: list[ReportRow]
    total: int
    skip: int
    limit: int

class CleanupOut(BaseModel):
    orphans_deleted: int
    visits_deleted: int

class Token(BaseModel):
    access_token: str
    token_type: str


def parse_link_fields(form: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Regroup flat ``links[i][field]`` form keys into a list of dicts.

    Entries come back ordered by their index; gaps in the numbering are
    collapsed.
    """
    grouped: dict[int, dict[str, Any]] = {}
    for key, value in form.items():
        match = _LINK_FIELD.match(key)
        if not match:
            continue
        index, field = int(match.group(1)), match.group(2)
        grouped.setdefault(index, {})[field] = value
    return [grouped[i] for i in sorted(grouped)]
