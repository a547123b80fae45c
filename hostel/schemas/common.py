from pydantic import BaseModel
from typing import Any


# ─── Pagination Meta ───────────────────────────────────────────────────────────
class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int
    hasNext: bool
    hasPrev: bool

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "PaginationMeta":
        total_pages = (total + limit - 1) // limit if limit > 0 else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            totalPages=total_pages,
            hasNext=page < total_pages,
            hasPrev=page > 1,
        )


# ─── Envelopes ─────────────────────────────────────────────────────────────────
# Error envelopes are produced by hostel/middleware/error_handler.py
def success_response(message: str, data: Any = None) -> dict:
    """Standard success envelope returned by every route handler."""
    return {"success": True, "message": message, "data": data}


def paginated_response(message: str, data: list, total: int, page: int, limit: int) -> dict:
    return {
        "success": True,
        "message": message,
        "data": data,
        "meta": PaginationMeta.build(total, page, limit).model_dump(),
    }
