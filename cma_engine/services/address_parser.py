"""
Free-text address → structured fields for the listing search API.

Example: "2402 Rockingham Cir, Austin, TX 78704" ->
    street_number="2402", street_name="Rockingham", street_suffix="Cir",
    city="Austin", state="TX", zip="78704", confidence=PARSED

Never raises: a string with no recognisable structure is UNPARSED, one with
only some of number/name/zip is PARTIAL. Callers must treat PARTIAL like
UNPARSED when deciding whether a structured query is safe.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

class AddressConfidence(str, Enum):
    PARSED = "parsed"
    PARTIAL = "partial"
    UNPARSED = "unparsed"

@dataclass(frozen=True)
class ParsedAddress:
    confidence: AddressConfidence
    street_number: Optional[str] = None
    street_name: Optional[str] = None
    street_suffix: Optional[str] = None
    unit: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None

    @property
    def is_parsed(self) -> bool:
        return self.confidence is AddressConfidence.PARSED

    @property
    def street_key(self) -> Optional[str]:
        """"<number> <name>" used to find the subject among results; None unless both exist."""
        if self.street_number and self.street_name:
            return f"{self.street_number} {self.street_name}"
        return None

    def structured_terms(self) -> dict:
        """Upstream query fields. Only a PARSED address may be searched this way."""
        if not self.is_parsed:
            raise ValueError(f"{self.confidence.value} address cannot drive a structured search")
        terms = {"streetNumber": self.street_number, "streetName": self.street_name, "zip": self.zip}
        if self.street_suffix:
            terms["streetSuffix"] = self.street_suffix
        return terms

STREET_SUFFIXES = {
    s.lower() for s in (
        "St", "Street", "Ave", "Avenue", "Blvd", "Boulevard", "Dr", "Drive", "Rd", "Road",
        "Ln", "Lane", "Ct", "Court", "Pl", "Place", "Cir", "Circle", "Way", "Pkwy", "Parkway",
        "Trl", "Trail", "Path", "Pass", "Loop", "Bend", "Ridge", "Hill", "Creek", "Run",
        "Ter", "Terrace", "Sq", "Square", "Plaza", "Alley", "Walk", "Commons", "Green",
        "Cv", "Cove", "Hwy", "Highway", "Xing", "Crossing", "Pt", "Point", "Row", "Vw", "View",
    )
}

US_STATES = {
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL", "GA", "HI", "ID", "IL", "IN",
    "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH",
    "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC", "SD", "TN", "TX", "UT",
    "VT", "VA", "WA", "WV", "WI", "WY",
}

_UNIT_RE = re.compile(r"(?:\b(?:unit|apt|apartment|suite|ste)\b\.?\s*|#\s*)([A-Za-z0-9-]+)", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^\d+[A-Za-z]?$")
_ZIP_RE = re.compile(r"^(\d{5})(?:-\d{4})?$")

def _tokens(text: str) -> List[str]:
    return [t.strip(".") for t in text.split() if t.strip(".")]

def _is_suffix(token: str) -> bool:
    return token.lower().rstrip(".") in STREET_SUFFIXES

def _is_state(token: str) -> bool:
    # "Ct" is a suffix, "CT" is Connecticut
    return token.upper() in US_STATES and (token.isupper() or not _is_suffix(token))

def parse_address(text: Optional[str]) -> ParsedAddress:
    if not text or not text.strip():
        return ParsedAddress(confidence=AddressConfidence.UNPARSED)

    unit = None
    unit_match = _UNIT_RE.search(text)
    if unit_match:
        unit = unit_match.group(1)
        text = text[:unit_match.start()] + " " + text[unit_match.end():]

    segments = [s.strip() for s in text.split(",") if s.strip()]
    if not segments:
        return ParsedAddress(confidence=AddressConfidence.UNPARSED, unit=unit)

    if len(segments) > 1:
        street_tokens = _tokens(segments[0])
        tail_tokens = _tokens(" ".join(segments[1:]))
    else:
        street_tokens = _tokens(segments[0])
        tail_tokens = []

    # zip + state come off the end of whatever holds the locality
    locality = tail_tokens if tail_tokens else street_tokens
    zip_code = state = None
    if locality and _ZIP_RE.match(locality[-1]):
        zip_code = _ZIP_RE.match(locality.pop()).group(1)
        if locality and _is_state(locality[-1]) and (tail_tokens or len(locality) > 2):
            state = locality.pop().upper()
    elif tail_tokens and _is_state(tail_tokens[-1]):
        state = tail_tokens.pop().upper()

    street_number = None
    if street_tokens and _NUMBER_RE.match(street_tokens[0]):
        street_number = street_tokens.pop(0)

    street_suffix = None
    city_tokens: List[str] = list(tail_tokens)
    if len(segments) > 1:
        if len(street_tokens) > 1 and _is_suffix(street_tokens[-1]):
            street_suffix = street_tokens.pop()
    else:
        # No commas: a suffix word not followed by another suffix ends the street
        # ("Old Mill Creek Rd Austin"), the rest is city
        for i in range(1, len(street_tokens)):
            nxt = street_tokens[i + 1] if i + 1 < len(street_tokens) else None
            if _is_suffix(street_tokens[i]) and not (nxt and _is_suffix(nxt)):
                street_suffix = street_tokens[i]
                city_tokens = street_tokens[i + 1:]
                street_tokens = street_tokens[:i]
                break
        if street_suffix is None and state:
            # "123 Main Austin TX 78701": state present but no suffix, city is not separable
            city_tokens = []

    street_name = " ".join(street_tokens) or None
    if street_name and not re.search(r"[A-Za-z]", street_name):
        street_name = None
    city = " ".join(city_tokens) or None

    if street_number and street_name and zip_code:
        confidence = AddressConfidence.PARSED
    elif any((street_number, street_name, street_suffix, zip_code)):
        confidence = AddressConfidence.PARTIAL
    else:
        confidence = AddressConfidence.UNPARSED

    return ParsedAddress(
        confidence=confidence,
        street_number=street_number,
        street_name=street_name,
        street_suffix=street_suffix,
        unit=unit,
        city=city,
        state=state,
        zip=zip_code,
    )
