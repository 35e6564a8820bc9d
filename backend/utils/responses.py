import math

from utils.serializers import serialize_doc


def success_response(data=None, message: str | None = None) -> dict:
    body = {"success": True, "data": serialize_doc(data)}
    if message:
        body["message"] = message
    return body


def error_body(error: str, details=None) -> dict:
    body = {"success": False, "error": error}
    if details:
        body["details"] = details
    return body


def paginated(items, *, page: int, limit: int, total: int, **extra) -> dict:
    data = {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 0,
        },
    }
    data.update(extra)
    return data
