"""
callrank/contacts/base.py
Abstract base class for contact identity lookups.
To add a new source: subclass ContactLookup and implement lookup().
"""

from abc import ABC, abstractmethod
from typing import Optional

from callrank.models.record import ContactInfo


class ContactLookup(ABC):
    """
    The enricher calls lookup() once per canonical key per pass and
    caches the answer, misses included.
    """

    @abstractmethod
    def lookup(self, phone_number: str) -> Optional[ContactInfo]:
        """
        Resolve a raw phone number to a contact.
        Returns None when no contact matches. May be slow. May raise —
        the enricher treats an exception as a miss for that caller only.
        """
        ...


class NullContactLookup(ContactLookup):
    """No address book available — every caller falls back to log data."""

    def lookup(self, phone_number: str) -> Optional[ContactInfo]:
        return None
