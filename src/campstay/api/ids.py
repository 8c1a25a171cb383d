"""Request-side id validation.

Ids reach psycopg2 as plain strings; a malformed one is rejected here as a
422 instead of surfacing as a database DataError.
"""

import uuid
from typing import Annotated

from pydantic import AfterValidator


def _canonical_uuid(value: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise ValueError("must be a UUID") from None


UuidStr = Annotated[str, AfterValidator(_canonical_uuid)]
