"""Actor identity for audit entries.

Authentication happens upstream; the gateway forwards the authenticated
user's id in ``X-Actor-Id``. Requests without it are recorded as system
actions (actor_id NULL).
"""

from fastapi import Header

ACTOR_ID_HEADER = "X-Actor-Id"


def get_actor_id(
    x_actor_id: str | None = Header(None, alias=ACTOR_ID_HEADER),
) -> str | None:
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None
