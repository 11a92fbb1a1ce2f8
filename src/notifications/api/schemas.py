"""Pydantic request/response models for the Notifications API.

API schemas are separate from the domain model (anti-corruption pattern).
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------
class CreateNotificationRequest(BaseModel):
    recipient_id: str = Field(..., min_length=1)
    sender_id: str | None = None
    type: str = Field(..., examples=["FOLLOW"])
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    reference_id: str | None = Field(default=None, max_length=255)
    reference_type: str | None = Field(default=None, examples=["POST"])
    priority: str | None = Field(default=None, examples=["MEDIUM"])
    metadata: dict | None = None


class ChannelToggles(BaseModel):
    email: bool | None = None
    push: bool | None = None
    in_app: bool | None = None


class QuietHoursRequest(BaseModel):
    enabled: bool | None = None
    start_time: str | None = Field(default=None, examples=["22:00"])
    end_time: str | None = Field(default=None, examples=["08:00"])
    timezone: str | None = Field(default=None, examples=["Europe/Berlin"])


class UpdatePreferencesRequest(BaseModel):
    email_enabled: bool | None = None
    push_enabled: bool | None = None
    in_app_enabled: bool | None = None
    preferences: dict[str, ChannelToggles] | None = None
    quiet_hours: QuietHoursRequest | None = None

    def to_patch(self) -> dict:
        return self.model_dump(exclude_none=True)


class CleanupRequest(BaseModel):
    notification_days: int | None = Field(default=None, ge=0)
    identity_days: int | None = Field(default=None, ge=0)
    read_only: bool = False


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------
class StatusResponse(BaseModel):
    status: str = "ok"


class SenderResponse(BaseModel):
    id: str
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    verified: bool = False


class NotificationResponse(BaseModel):
    id: str
    recipient_id: str
    sender_id: str | None = None
    type: str
    title: str
    message: str
    reference_id: str | None = None
    reference_type: str | None = None
    is_read: bool
    priority: str
    metadata: dict = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    read_at: datetime | None = None
    sender: SenderResponse | None = None


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    pagination: PaginationResponse
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class CountResponse(BaseModel):
    status: str = "ok"
    count: int


class TypeBreakdown(BaseModel):
    read: int = 0
    unread: int = 0


class StatsResponse(BaseModel):
    total: int
    unread: int
    read: int
    by_type: dict[str, TypeBreakdown]


class QuietHoursResponse(BaseModel):
    enabled: bool
    start_time: str
    end_time: str
    timezone: str


class PreferencesResponse(BaseModel):
    user_id: str
    email_enabled: bool
    push_enabled: bool
    in_app_enabled: bool
    preferences: dict[str, dict[str, bool]]
    quiet_hours: QuietHoursResponse
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DecisionResponse(BaseModel):
    type: str
    evaluated_at: datetime
    channels: dict[str, bool]


class CleanupResponse(BaseModel):
    notifications_deleted: int
    receipts_deleted: int
    identities_deleted: int


class EraseResponse(BaseModel):
    notifications_deleted: int
    receipts_deleted: int
    preferences_deleted: bool
    identity_deleted: bool
