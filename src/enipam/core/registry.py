"""
Free-IP registry.

A durable ledger of addresses believed to be unassigned, each with the time
it was last tracked as free. The GC reaper releases entries that stay idle
past a cutoff; the allocation path keeps entries current.

Timestamps only move forward while an entry exists. An address that gets
reused is forgotten, never back-dated.
"""

from __future__ import annotations

import datetime
import functools

import peewee

from enipam.db.base import db, initialize_database
from enipam.db.registry import FreeAddress, to_utc
from enipam.errors import RegistryError, ValidationError
from enipam.netstate import normalize_address
from enipam.utils.logger import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _guarded(func):
    """Translate storage failures into RegistryError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except peewee.DatabaseError as e:
            logger.error(f"Registry {func.__name__} failed: {e}")
            raise RegistryError(f"registry {func.__name__} failed: {e}")

    return wrapper


def _canonical(address: str) -> str:
    try:
        return normalize_address(address)
    except ValueError:
        raise ValidationError(f"invalid IP address: {address!r}")


class FreeIPRegistry:
    """
    Address -> last-tracked timestamp ledger backed by SQLite.

    Every write commits in its own transaction, so a crash leaves either the
    old or the new row, never a torn file.
    """

    def __init__(self, path: str):
        self.path = path
        initialize_database(path)

    # =========================================================================
    # Queries
    # =========================================================================

    @_guarded
    def list_addresses(self) -> set[str]:
        """Every tracked address."""
        return {row.address for row in FreeAddress.select(FreeAddress.address)}

    @_guarded
    def entries(self) -> dict[str, datetime.datetime]:
        """Every tracked address with its timestamp, oldest first."""
        query = FreeAddress.select().order_by(
            FreeAddress.tracked_at, FreeAddress.address
        )
        return {row.address: row.tracked_at for row in query}

    @_guarded
    def has(self, address: str) -> bool:
        row = FreeAddress.get_or_none(FreeAddress.address == _canonical(address))
        return row is not None

    @_guarded
    def tracked_at(self, address: str) -> datetime.datetime | None:
        row = FreeAddress.get_or_none(FreeAddress.address == _canonical(address))
        return row.tracked_at if row else None

    @_guarded
    def tracked_before(self, cutoff: datetime.datetime) -> list[str]:
        """
        Addresses last tracked strictly before ``cutoff``, oldest first.

        This is the iteration order the GC reaper walks.
        """
        query = (
            FreeAddress.select(FreeAddress.address)
            .where(FreeAddress.tracked_at < to_utc(cutoff))
            .order_by(FreeAddress.tracked_at, FreeAddress.address)
        )
        return [row.address for row in query]

    # =========================================================================
    # Mutations
    # =========================================================================

    @_guarded
    def track(
        self,
        address: str,
        when: datetime.datetime | None = None,
    ) -> datetime.datetime:
        """
        Record ``address`` as free at ``when`` (default now).

        An existing newer timestamp is kept; the stored value never decreases.

        Returns:
            The timestamp stored after the call.
        """
        address = _canonical(address)
        when = to_utc(when) if when else _utcnow()
        with db.atomic():
            row = FreeAddress.get_or_none(FreeAddress.address == address)
            if row is not None and row.tracked_at >= when:
                return row.tracked_at
            FreeAddress.replace(address=address, tracked_at=when).execute()
        logger.debug(f"Tracked {address} as free at {when.isoformat()}")
        return when

    @_guarded
    def track_if_absent(
        self,
        address: str,
        when: datetime.datetime | None = None,
    ) -> bool:
        """
        Start tracking ``address`` unless it is already tracked.

        Keeps the first-observed timestamp of addresses that stay free.

        Returns:
            True if a new entry was written.
        """
        address = _canonical(address)
        when = to_utc(when) if when else _utcnow()
        with db.atomic():
            if FreeAddress.get_or_none(FreeAddress.address == address) is not None:
                return False
            FreeAddress.create(address=address, tracked_at=when)
        logger.debug(f"Started tracking {address} as free")
        return True

    @_guarded
    def forget(self, address: str) -> None:
        """Drop ``address`` from the registry. No error if absent."""
        address = _canonical(address)
        with db.atomic():
            deleted = FreeAddress.delete().where(FreeAddress.address == address).execute()
        if deleted:
            logger.debug(f"Forgot {address}")

    @_guarded
    def clear(self) -> int:
        """Drop every entry. Returns the number removed."""
        with db.atomic():
            return FreeAddress.delete().execute()
