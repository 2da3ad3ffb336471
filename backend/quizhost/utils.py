import random
import string
import uuid
from datetime import datetime, timezone
from typing import Optional

JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
JOIN_CODE_LENGTH = 8


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive datetimes from clients are taken to be UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def generate_join_code() -> str:
    return "".join(random.choices(JOIN_CODE_ALPHABET, k=JOIN_CODE_LENGTH))
