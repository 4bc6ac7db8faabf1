"""
Free-address database model.

One row per address believed to be unassigned, keyed by the address string,
with the time it was last tracked as free stored as ISO-8601 UTC text.
"""

import datetime

import peewee

from enipam.db.base import BaseModel

# Fixed width so lexicographic order in SQLite matches chronological order
ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def to_utc(value: datetime.datetime) -> datetime.datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class IsoDateTimeField(peewee.Field):
    """Timezone-aware datetime stored as fixed-width ISO-8601 UTC text."""

    field_type = "TEXT"

    def db_value(self, value):
        if value is None:
            return None
        if isinstance(value, str):
            return value
        return to_utc(value).strftime(ISO_FORMAT)

    def python_value(self, value):
        if value is None:
            return None
        return to_utc(datetime.datetime.fromisoformat(value))


class FreeAddress(BaseModel):
    """
    An address last observed unassigned at ``tracked_at``.

    Attributes:
        address: Canonical IP address string (primary key).
        tracked_at: When the address was last tracked as free (UTC).
    """

    address = peewee.CharField(primary_key=True)
    tracked_at = IsoDateTimeField(index=True)

    class Meta:
        table_name = "free_addresses"
