"""FastAPI routes for the Notifications domain.

Thin adapters that translate HTTP requests into service calls.
No business logic, just schema→service→response translation.

The caller is identified by the ``X-User-Id`` header, set by the gateway
after authentication.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from notifications.api.schemas import (
    CleanupRequest,
    CleanupResponse,
    CountResponse,
    CreateNotificationRequest,
    DecisionResponse,
    EraseResponse,
    NotificationListResponse,
    NotificationResponse,
    PaginationResponse,
    PreferencesResponse,
    StatsResponse,
    StatusResponse,
    UnreadCountResponse,
    UpdatePreferencesRequest,
)
from notifications.delivery.decision import decisions_as_dict
from notifications.identity_cache.cache import find_identities, identity_or_fallback
from notifications.maintenance import erase_user_data, run_cleanup
from notifications.notification.store import (
    create_notification,
    delete_all_notifications,
    delete_notification,
    get_notification_stats,
    get_unread_count,
    list_notifications,
    mark_all_as_read,
    mark_as_read,
)
from notifications.preference.resolution import (
    delivery_decisions,
    get_or_create_preferences,
    reset_preferences,
    update_preferences,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def caller_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    return x_user_id


def _notification_response(notification, identities=None) -> NotificationResponse:
    data = notification.to_dict()
    if notification.sender_id:
        data["sender"] = identity_or_fallback(notification.sender_id, identities)
    return NotificationResponse(**data)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    page: int = Query(default=1),
    limit: int | None = Query(default=None),
    unread_only: bool = Query(default=False),
    type: str | None = Query(default=None),
    user_id: str = Depends(caller_id),
) -> NotificationListResponse:
    """Page through the caller's notifications, newest first, with sender identities."""
    result = list_notifications(user_id, page=page, limit=limit, unread_only=unread_only, notification_type=type)
    identities = find_identities(n.sender_id for n in result.items if n.sender_id)

    return NotificationListResponse(
        notifications=[_notification_response(n, identities) for n in result.items],
        pagination=PaginationResponse(
            page=result.page,
            limit=result.limit,
            total=result.total,
            pages=result.pages,
            has_next=result.has_next,
            has_prev=result.has_prev,
        ),
        unread_count=get_unread_count(user_id),
    )


@router.post("", status_code=201, response_model=NotificationResponse)
async def post_notification(body: CreateNotificationRequest) -> NotificationResponse:
    """Internal create call used by other services."""
    notification = create_notification(
        body.recipient_id,
        body.type,
        body.title,
        body.message,
        sender_id=body.sender_id,
        reference_id=body.reference_id,
        reference_type=body.reference_type,
        priority=body.priority,
        metadata=body.metadata,
    )
    return _notification_response(notification)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(user_id: str = Depends(caller_id)) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=get_unread_count(user_id))


@router.get("/stats", response_model=StatsResponse)
async def stats(user_id: str = Depends(caller_id)) -> StatsResponse:
    return StatsResponse(**get_notification_stats(user_id))


@router.put("/read-all", response_model=CountResponse)
async def read_all(user_id: str = Depends(caller_id)) -> CountResponse:
    return CountResponse(count=mark_all_as_read(user_id))


@router.delete("", response_model=CountResponse)
async def delete_all(user_id: str = Depends(caller_id)) -> CountResponse:
    return CountResponse(count=delete_all_notifications(user_id))


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------
@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(user_id: str = Depends(caller_id)) -> PreferencesResponse:
    """Get the caller's preferences, creating defaults on first access."""
    return PreferencesResponse(**get_or_create_preferences(user_id).to_dict())


@router.put("/preferences", response_model=PreferencesResponse)
async def put_preferences(body: UpdatePreferencesRequest, user_id: str = Depends(caller_id)) -> PreferencesResponse:
    """Merge a partial preference update."""
    return PreferencesResponse(**update_preferences(user_id, body.to_patch()).to_dict())


@router.post("/preferences/reset", response_model=PreferencesResponse)
async def post_reset_preferences(user_id: str = Depends(caller_id)) -> PreferencesResponse:
    return PreferencesResponse(**reset_preferences(user_id).to_dict())


@router.get("/preferences/decisions/{notification_type}", response_model=DecisionResponse)
async def get_decisions(notification_type: str, user_id: str = Depends(caller_id)) -> DecisionResponse:
    """What each channel would do for ``notification_type`` right now."""
    now = datetime.now(UTC)
    decisions = delivery_decisions(user_id, notification_type, now)
    return DecisionResponse(type=notification_type, evaluated_at=now, channels=decisions_as_dict(decisions))


# ---------------------------------------------------------------------------
# Maintenance: periodic background job and account-deletion endpoints
# ---------------------------------------------------------------------------
@router.post("/maintenance/cleanup", response_model=CleanupResponse)
async def cleanup(body: CleanupRequest | None = None) -> CleanupResponse:
    body = body or CleanupRequest()
    return CleanupResponse(
        **run_cleanup(
            notification_days=body.notification_days,
            identity_days=body.identity_days,
            read_only=body.read_only,
        )
    )


@router.delete("/users/{target_user_id}", response_model=EraseResponse)
async def erase_user(target_user_id: str) -> EraseResponse:
    return EraseResponse(**erase_user_data(target_user_id))


# ---------------------------------------------------------------------------
# Single notification
# ---------------------------------------------------------------------------
@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def read_notification(notification_id: str, user_id: str = Depends(caller_id)) -> NotificationResponse:
    return _notification_response(mark_as_read(notification_id, recipient_id=user_id))


@router.delete("/{notification_id}", response_model=StatusResponse)
async def remove_notification(notification_id: str, user_id: str = Depends(caller_id)) -> StatusResponse:
    delete_notification(notification_id, recipient_id=user_id)
    return StatusResponse()
