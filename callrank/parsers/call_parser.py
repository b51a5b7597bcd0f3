"""
callrank/parsers/call_parser.py
Record source: SMS Backup & Restore call log XML files (calls-*.xml).

Streams with ET.iterparse() so large call logs do not load a full tree.
BOM handling: UTF-8-BOM, UTF-16-LE/BE by BOM, else UTF-8.
No filtering beyond well-formedness: private and short numbers are passed
through untouched and classified later by the aggregator.
"""

import io
import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional

from callrank.models.record import (
    ANSWERED_EXTERNALLY, BLOCKED, INCOMING, MISSED, OUTGOING, REJECTED,
    UNKNOWN_TYPE, VOICEMAIL, RawCallRecord,
)

logger = logging.getLogger(__name__)

BOM_UTF8 = b'\xef\xbb\xbf'
BOM_UTF16_LE = b'\xff\xfe'
BOM_UTF16_BE = b'\xfe\xff'

CALL_TYPE = {
    '1': INCOMING,  '2': OUTGOING, '3': MISSED,
    '4': VOICEMAIL, '5': REJECTED, '6': BLOCKED,
    '7': ANSWERED_EXTERNALLY,
}

# Placeholder names written by the backup app when no contact matched
NO_NAME = {'', '(unknown)', 'null'}


def _read_xml_text(path: Path) -> str:
    raw = path.read_bytes()
    if raw.startswith(BOM_UTF8):
        return raw[len(BOM_UTF8):].decode('utf-8', errors='replace')
    if raw.startswith(BOM_UTF16_LE):
        return raw[len(BOM_UTF16_LE):].decode('utf-16-le', errors='replace')
    if raw.startswith(BOM_UTF16_BE):
        return raw[len(BOM_UTF16_BE):].decode('utf-16-be', errors='replace')
    try:
        return raw.decode('utf-8', errors='strict')
    except UnicodeDecodeError:
        return raw.decode('utf-8', errors='replace')


def _strip_stylesheet(content: str) -> str:
    return re.sub(r'<\?xml-stylesheet[^?]*\?>', '', content)


def parse_call_file(path: Path) -> List[RawCallRecord]:
    """
    Parse a single calls XML file.
    Malformed elements are skipped; a truncated file keeps the records
    read before the parse error; an unreadable file yields [].
    """
    records: List[RawCallRecord] = []

    try:
        content = _strip_stylesheet(_read_xml_text(path))
        stream  = io.StringIO(content)

        for _event, el in ET.iterparse(stream, events=('end',)):
            if el.tag.lower() != 'call':
                continue
            try:
                ts  = int(el.get('date', '0') or '0')
                dur = int(el.get('duration', '0') or '0')
                num = _sanitize(el.get('number', '') or '')[:30]
                records.append(RawCallRecord(
                    record_id    = f"{ts}:{num}",
                    phone_number = num,
                    call_type    = CALL_TYPE.get(el.get('type', '1'), UNKNOWN_TYPE),
                    timestamp_ms = ts,
                    duration_sec = max(dur, 0),
                    contact_name = _clean_name(el.get('contact_name')),
                    source_file  = path.name,
                ))
            except ValueError as e:
                logger.debug(f"Skipped call element: {e}")
            finally:
                el.clear()

    except ET.ParseError as e:
        logger.error(f"XML parse error in {path.name}: {e}")
        return records
    except OSError as e:
        logger.error(f"File read error {path.name}: {e}")
        return []

    logger.info(f"Parsed {len(records)} calls from {path.name}")
    return records


def parse_call_directory(directory: Path) -> List[RawCallRecord]:
    """
    All calls-*.xml files in a directory, deduplicated on
    (timestamp_ms, phone_number) and sorted by timestamp.
    A missing directory is an empty source, not an error.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning(f"Call log directory not found: {directory}")
        return []

    all_records: List[RawCallRecord] = []
    seen: set = set()

    for path in sorted(directory.glob('calls-*.xml')):
        for rec in parse_call_file(path):
            key = (rec.timestamp_ms, rec.phone_number)
            if key in seen:
                continue
            seen.add(key)
            all_records.append(rec)

    all_records.sort(key=lambda r: r.timestamp_ms)
    logger.info(f"Total calls after dedup: {len(all_records)}")
    return all_records


def _sanitize(text: str) -> str:
    return ''.join(c for c in (text or '') if c.isprintable()).strip()


def _clean_name(name: Optional[str]) -> Optional[str]:
    cleaned = _sanitize(name or '')[:300]
    if cleaned.lower() in NO_NAME:
        return None
    return cleaned
