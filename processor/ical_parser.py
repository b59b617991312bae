"""Lenient iCal parser for booking calendar feeds."""
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from processor.models import CalendarEvent

logger = logging.getLogger(__name__)

_DATE_CHARS = re.compile(r'[^0-9TZ]')
_TEXT_ESCAPE = re.compile(r'\\([\\,;nN])')


def parse_ical_date(value: str) -> datetime:
    """
    Parse an iCal DATE or DATE-TIME value.

    Dates without a ``Z`` suffix are naive local time; the result is always
    timezone-aware so local and UTC values compare safely.

    Args:
        value: Raw property value (e.g. "20250615" or "20250615T140000Z")

    Returns:
        Parsed datetime, or the current time if the value is unrecognized
    """
    clean = _DATE_CHARS.sub('', value)

    try:
        if len(clean) == 8:
            return datetime(
                int(clean[0:4]), int(clean[4:6]), int(clean[6:8])
            ).astimezone()

        if 'T' in clean:
            date_part, time_part = clean.split('T', 1)
            time_part = time_part.replace('Z', '')

            year = int(date_part[0:4])
            month = int(date_part[4:6])
            day = int(date_part[6:8])
            hour = int(time_part[0:2] or '0')
            minute = int(time_part[2:4] or '0')
            second = int(time_part[4:6] or '0')

            if clean.endswith('Z'):
                return datetime(
                    year, month, day, hour, minute, second, tzinfo=timezone.utc
                )
            return datetime(year, month, day, hour, minute, second).astimezone()
    except ValueError as e:
        logger.warning(f"Invalid iCal date '{value}': {e}")
        return datetime.now().astimezone()

    logger.warning(f"Unrecognized iCal date '{value}', using current time")
    return datetime.now().astimezone()


def unescape_text(value: str) -> str:
    """Decode RFC 5545 TEXT escapes (\\n, \\, \\; \\\\)."""
    def _replace(match):
        char = match.group(1)
        return '\n' if char in 'nN' else char

    return _TEXT_ESCAPE.sub(_replace, value)


def unfold_lines(raw_text: str) -> List[str]:
    """
    Split raw iCal text into logical lines.

    Physical lines starting with a space or tab continue the previous
    logical line; the leading whitespace character is dropped.
    """
    logical: List[str] = []

    for line in re.split(r'\r?\n', raw_text):
        if line[:1] in (' ', '\t') and logical:
            logical[-1] += line[1:]
        else:
            logical.append(line)

    return logical


class ICalParser:
    """Parser turning iCal text into CalendarEvent objects."""

    TEXT_PROPERTIES = {'SUMMARY', 'DESCRIPTION', 'LOCATION'}
    KNOWN_PROPERTIES = {
        'UID', 'SUMMARY', 'DESCRIPTION', 'DTSTART', 'DTEND', 'LOCATION', 'STATUS'
    }

    def parse(self, raw_text: str) -> List[CalendarEvent]:
        """
        Parse every complete VEVENT in an iCal document.

        Malformed lines are ignored and events missing a UID, SUMMARY,
        DTSTART or DTEND are dropped; parsing never raises.

        Args:
            raw_text: iCal document text

        Returns:
            List of CalendarEvent objects in feed order
        """
        events = []
        current: Optional[Dict[str, object]] = None
        dropped = 0

        for line in unfold_lines(raw_text):
            marker = line.strip()

            if marker == 'BEGIN:VEVENT':
                current = {}
            elif marker == 'END:VEVENT':
                if current is not None:
                    event = self._build_event(current)
                    if event:
                        events.append(event)
                    else:
                        dropped += 1
                current = None
            elif current is not None:
                self._read_property(line, current)

        if dropped:
            logger.info(f"Dropped {dropped} incomplete events")
        logger.info(f"Parsed {len(events)} events from calendar")
        return events

    def _read_property(self, line: str, fields: Dict[str, object]) -> None:
        """Store a recognized content line into the event accumulator."""
        colon = line.find(':')
        if colon <= 0:
            return

        name = line[:colon].split(';', 1)[0].strip().upper()
        value = line[colon + 1:]

        if name not in self.KNOWN_PROPERTIES:
            return

        if name in ('DTSTART', 'DTEND'):
            fields[name] = parse_ical_date(value)
        elif name in self.TEXT_PROPERTIES:
            fields[name] = unescape_text(value)
        else:
            fields[name] = value

    def _build_event(self, fields: Dict[str, object]) -> Optional[CalendarEvent]:
        """Create a CalendarEvent if all required fields are present."""
        if not all(fields.get(key) for key in ('UID', 'SUMMARY', 'DTSTART', 'DTEND')):
            return None

        return CalendarEvent(
            uid=fields['UID'],
            summary=fields['SUMMARY'],
            start_date=fields['DTSTART'],
            end_date=fields['DTEND'],
            description=fields.get('DESCRIPTION'),
            location=fields.get('LOCATION'),
            status=fields.get('STATUS')
        )


def parse_ical(raw_text: str) -> List[CalendarEvent]:
    """Parse iCal text with a default ICalParser."""
    return ICalParser().parse(raw_text)
