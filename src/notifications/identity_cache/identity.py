"""UserIdentity: local projection of the minimal identity fields used to render notifications."""

from notifications.domain import notifications
from protean.fields import Boolean, DateTime, Identifier, String


@notifications.projection
class UserIdentity:
    user_id: Identifier(identifier=True, required=True)
    username: String(required=True, max_length=50)
    display_name: String(max_length=100)
    avatar_url: String(max_length=500)
    verified: Boolean(default=False)
    last_synced: DateTime(required=True)
    created_at: DateTime()
    updated_at: DateTime()

    def to_dict(self) -> dict:
        return {
            "id": str(self.user_id),
            "username": self.username,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
            "verified": bool(self.verified),
        }
