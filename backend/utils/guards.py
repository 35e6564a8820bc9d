from bson import ObjectId
from bson.errors import InvalidId

from utils.errors import ValidationError

# -------------------------------
# ObjectId Guard
# -------------------------------

def parse_object_id(value, name: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {name} / Yanlış {name}")


def parse_optional_object_id(value, name: str = "id") -> ObjectId | None:
    if value is None or value == "":
        return None
    return parse_object_id(value, name)


# -------------------------------
# Pagination Guard
# -------------------------------

def clamp_pagination(page: int, limit: int, max_limit: int) -> tuple[int, int, int]:
    page = max(1, page)
    limit = max(1, min(limit, max_limit))
    return page, limit, (page - 1) * limit
