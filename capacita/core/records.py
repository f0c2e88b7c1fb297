import random
import string
import time
from datetime import datetime, timezone
from typing import Any

ID_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
ID_SUFFIX_LENGTH = 9


def generate_id() -> str:
    # Millisecond clock plus a short random suffix; unique in practice, not guaranteed.
    suffix = ''.join(random.choices(ID_SUFFIX_ALPHABET, k=ID_SUFFIX_LENGTH))
    return f'{int(time.time() * 1000)}{suffix}'


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def find_index(records: list[dict[str, Any]], record_id: str) -> int | None:
    for index, record in enumerate(records):
        if record.get('id') == record_id:
            return index
    return None


def public_view(record: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in record.items() if key != 'senha'}
