"""
callrank/models/record.py
Shared dataclass schema. Parsers, aggregators, the store and the API
all use these types. Do not add logic here — data only.
"""

from dataclasses import dataclass
from typing import Optional

# Call type labels (SMS Backup & Restore numbering in parsers/call_parser.py)
INCOMING            = 'Incoming'
OUTGOING            = 'Outgoing'
MISSED              = 'Missed'
VOICEMAIL           = 'Voicemail'
REJECTED            = 'Rejected'
BLOCKED             = 'Blocked'
ANSWERED_EXTERNALLY = 'Answered Externally'
UNKNOWN_TYPE        = 'Unknown'

# Grouped into CallerStatistic.missed_calls
MISSED_TYPES = (MISSED, VOICEMAIL, REJECTED)

PRIVATE_KEY = 'PRIVATE'

# Ranking categories
MOST_CALLED = 'MOST_CALLED'
MOST_TALKED = 'MOST_TALKED'

# Time ranges
WEEKLY   = 'WEEKLY'
ALL_TIME = 'ALL_TIME'


@dataclass(frozen=True)
class RawCallRecord:
    """One call log entry as produced by a record source."""
    record_id:     str
    phone_number:  str
    call_type:     str          # Incoming / Outgoing / Missed / Voicemail / Rejected / ...
    timestamp_ms:  int
    duration_sec:  int
    contact_name:  Optional[str] = None
    photo_uri:     Optional[str] = None
    source_file:   str           = ''


@dataclass(frozen=True)
class ContactInfo:
    """Identity returned by a contact lookup."""
    contact_id:   str
    display_name: str
    photo_uri:    Optional[str] = None


@dataclass(frozen=True)
class CallerStatistic:
    """Aggregated, enriched and ranked statistics for one caller."""
    canonical_key:    str
    phone_number:     str
    display_name:     str
    contact_id:       Optional[str] = None
    photo_uri:        Optional[str] = None
    total_calls:      int           = 0
    incoming_calls:   int           = 0
    outgoing_calls:   int           = 0
    missed_calls:     int           = 0     # Missed + Voicemail + Rejected
    total_duration:   int           = 0     # seconds
    average_duration: int           = 0     # seconds per connected call
    first_call_ms:    int           = 0
    last_call_ms:     int           = 0
    rank_by_count:    int           = 0
    rank_by_duration: int           = 0


@dataclass
class DailyRollup:
    """Per-day call totals. day is a UTC YYYY-MM-DD label."""
    day:            str
    total_calls:    int = 0
    total_duration: int = 0
    incoming_calls: int = 0
    outgoing_calls: int = 0
    missed_calls:   int = 0


@dataclass(frozen=True)
class CallSummary:
    total_calls:    int = 0
    total_duration: int = 0
    unique_callers: int = 0
    total_incoming: int = 0
    total_outgoing: int = 0
    total_missed:   int = 0
