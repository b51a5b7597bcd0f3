"""
callrank/contacts/json_lookup.py
Contact lookup backed by an exported address book (JSON).

FORMAT:
  {
    "contacts": [
      {"id": "42", "name": "Jane Doe", "photo": "file:///...", "numbers": ["+1 555 123 4567"]}
    ]
  }

Numbers are indexed by canonical key, so "+15551234567" and
"(555) 123-4567" resolve to the same contact.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional

from callrank.contacts.base import ContactLookup
from callrank.models.record import ContactInfo
from callrank.utils.phone_numbers import is_private_number, normalize

logger = logging.getLogger(__name__)


class JsonContactLookup(ContactLookup):

    def __init__(self, contacts: Dict[str, ContactInfo]):
        self._by_key = dict(contacts)

    @classmethod
    def from_file(cls, path: Path) -> 'JsonContactLookup':
        """Load contacts. A missing or unreadable file gives an empty book."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            logger.warning(f"Contacts file not found: {path}")
            return cls({})
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Contacts file load failed: {e}")
            return cls({})
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> 'JsonContactLookup':
        index: Dict[str, ContactInfo] = {}
        entries = data.get('contacts', []) if isinstance(data, dict) else []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get('name'):
                continue
            info = ContactInfo(
                contact_id   = str(entry.get('id') or entry['name']),
                display_name = str(entry['name']),
                photo_uri    = entry.get('photo') or None,
            )
            for number in entry.get('numbers', []) or []:
                key = normalize(str(number))
                if key and key not in index:
                    index[key] = info
        logger.info(f"Loaded {len(index)} contact numbers")
        return cls(index)

    def lookup(self, phone_number: str) -> Optional[ContactInfo]:
        if is_private_number(phone_number):
            return None
        return self._by_key.get(normalize(phone_number))
