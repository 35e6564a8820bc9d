from bson import ObjectId
from datetime import datetime


def serialize_object_id(value):
    return str(value) if isinstance(value, ObjectId) else value


def serialize_doc(value):
    """
    Recursively make Mongo documents JSON friendly.
    `_id` becomes `id`, ObjectIds become strings, datetimes ISO strings.
    """
    if isinstance(value, ObjectId):
        return str(value)

    if isinstance(value, datetime):
        return value.isoformat()

    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            key = "id" if k == "_id" else k
            out[key] = serialize_doc(v)
        return out

    if isinstance(value, (list, tuple)):
        return [serialize_doc(v) for v in value]

    return value


def serialize_docs(docs):
    return [serialize_doc(d) for d in docs]
