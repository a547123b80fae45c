import logging

logger = logging.getLogger(__name__)


def send_allocation_status_notice(
    user_id: int,
    allocation_id: int,
    room_number: str,
    status: str,
    note: str | None = None,
) -> bool:
    """
    Delivery disabled; the notice is written to the log.
    Replace with the platform notification service when wired in.
    """
    logger.info(
        f"[HOSTEL NOTICE] User={user_id} | Allocation#{allocation_id} | "
        f"Room={room_number} | Status={status}" + (f" | {note}" if note else "")
    )
    return True


def send_room_reassigned_notice(
    user_id: int,
    allocation_id: int,
    old_room_number: str,
    new_room_number: str,
) -> bool:
    logger.info("=" * 60)
    logger.info(f"[HOSTEL NOTICE]  To         : user {user_id}")
    logger.info(f"[HOSTEL NOTICE]  Allocation : #{allocation_id}")
    logger.info(f"[HOSTEL NOTICE]  Room       : {old_room_number} -> {new_room_number}")
    logger.info("=" * 60)
    return True
