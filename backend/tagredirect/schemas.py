from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, Any, Dict, List
from datetime import datetime


class TagStatus(str, Enum):
    active = "active"
    suspended = "suspended"
    lost = "lost"
    unclaimed = "unclaimed"


class TargetType(str, Enum):
    profile = "profile"
    url = "url"


class EventType(str, Enum):
    scan = "scan"
    vcard_dl = "vcard_dl"
    lead_submit = "lead_submit"
    contact_click = "contact_click"
    claim = "claim"
    target_change = "target_change"
    transfer = "transfer"


class Device(str, Enum):
    mobile = "mobile"
    tablet = "tablet"
    desktop = "desktop"
    bot = "bot"


class Granularity(str, Enum):
    hour = "hour"
    day = "day"


# Interaction events a visitor's browser may report on its own
PUBLIC_EVENT_TYPES = {EventType.vcard_dl, EventType.lead_submit, EventType.contact_click}


class TagState(BaseModel):
    """Resolved snapshot of a physical tag, as cached and as served by the lookup service."""
    id: str
    status: TagStatus
    owner_id: Optional[str] = None
    target_type: TargetType = TargetType.profile
    target_url: Optional[str] = None
    target_profile_slug: Optional[str] = None

    @field_validator("target_type", mode="before")
    @classmethod
    def default_target_type(cls, v):
        return TargetType.profile if v is None else v

    @model_validator(mode="after")
    def drop_fields_for_other_target(self):
        # url and slug are mutually exclusive; keep only the one the target type uses
        if self.target_type == TargetType.url:
            self.target_profile_slug = None
        else:
            self.target_url = None
        return self


class AnalyticsEvent(BaseModel):
    """Append-only analytics fact. Never carries a raw IP."""
    tag_id: str = Field(min_length=1, max_length=64)
    event_type: EventType
    country: Optional[str] = Field(default=None, max_length=8)
    device: Optional[Device] = None
    referrer: Optional[str] = Field(default=None, max_length=200)
    ip_hash: Optional[str] = Field(default=None, pattern=r"^[0-9a-f]{64}$")
    utm: Optional[Dict[str, str]] = None
    metadata: Optional[Any] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class InteractionEventIn(BaseModel):
    event_type: EventType
    tag_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("event_type")
    @classmethod
    def only_public_types(cls, v):
        if v not in PUBLIC_EVENT_TYPES:
            raise ValueError(f"event_type '{v.value}' cannot be reported publicly")
        return v


class HandleOut(BaseModel):
    handle: Optional[str] = None


class RollupRequest(BaseModel):
    owner_id: str
    start: datetime
    end: datetime
    granularity: Granularity = Granularity.day

    @model_validator(mode="after")
    def check_range(self):
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class RollupBucket(BaseModel):
    bucket_start: datetime
    counts: Dict[str, int] = Field(default_factory=dict)


class RollupOut(BaseModel):
    owner_id: str
    granularity: Granularity
    buckets: List[RollupBucket]
