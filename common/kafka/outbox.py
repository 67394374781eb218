"""Publication of events that follow an already committed state change.

The state change is committed first and the event published after it. A
marker written only once the publish went through lets a replay of the same
request (a repeated callback, an idempotent retry, a redelivered message)
publish the event again when the earlier attempt failed, and skip it when it
did not. Events published this way carry a deterministic ``eventId`` so a
consumer that sees both copies can tell them apart from a new event.
"""
import logging

from common.db.util import retry_db_call

PUBLISHED_MARKER_TTL = 7 * 24 * 3600


def published_marker_key(event_id: str) -> str:
    return f"outbox:published:{event_id}"


async def publish_once(db, publish, event, topics, key: str | None = None) -> bool:
    """Publish ``event`` unless an earlier publish of the same ``eventId`` succeeded.

    Returns whether the event was published by this call. A failing publish
    leaves no marker and propagates, so the caller's retry publishes again.
    """
    marker = published_marker_key(event.event_id)
    if await retry_db_call(db.get, marker) is not None:
        logging.info(f"Event {event.event_id} already published, skipping")
        return False
    await publish(event, topics, key=key)
    await retry_db_call(db.set, marker, b"1", ex=PUBLISHED_MARKER_TTL)
    return True
