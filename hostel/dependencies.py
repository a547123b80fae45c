from fastapi import Header

from hostel.utils.exceptions import ValidationException


# ─── Acting User ──────────────────────────────────────────────────────────────
def get_actor_id(x_actor_id: str | None = Header(None, alias="X-Actor-Id")) -> int | None:
    """
    Acting user for audit attribution, taken from the optional X-Actor-Id header.
    Authentication happens upstream; this value is recorded, never trusted for access.

    Usage:
        @router.post("/rooms")
        def create_room(body: RoomCreateRequest, actor_id: int | None = Depends(get_actor_id)):
            ...
    """
    if x_actor_id is None or not x_actor_id.strip():
        return None
    try:
        return int(x_actor_id)
    except ValueError:
        raise ValidationException("X-Actor-Id must be an integer user id", field="X-Actor-Id")
