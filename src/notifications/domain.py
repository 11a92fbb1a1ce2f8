"""Notifications bounded context: delivery decisions for social-network events.

Consumes domain events published by the other Pulse services (users, social
graph, posts, events, messaging), decides per recipient and per channel
whether a notification may go out, persists the in-app record and keeps a
local projection of sender identities for rendering.
"""

import structlog
from notifications.utils.logging import configure_logging
from protean.domain import Domain

configure_logging()

notifications = Domain(name="notifications")

logger = structlog.get_logger(__name__)
