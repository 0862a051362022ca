"""
Query parser — turns a free-text ride search ("fast gravel rides near Berlin
this weekend") into structured filters using Groq's chat completions API.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from rideswith.config import (
    GROQ_MODEL,
    QUERY_PARSER_MAX_TOKENS,
    QUERY_PARSER_SYSTEM_PROMPT,
    QUERY_PARSER_TEMPERATURE,
)
from rideswith.openai_client import get_openai_client

logger = logging.getLogger(__name__)

INTENTS = ("search", "detail", "help", "unknown")
RELATIVE_RANGES = ("today", "tomorrow", "this_weekend", "next_week", "this_week")

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")

_SCHEMA = """{
  "intent": "search" | "detail" | "help" | "unknown",
  "location": { "name": "city", "useUserLocation": boolean },
  "radius": number (km),
  "dateRange": {
    "from": "YYYY-MM-DD",
    "to": "YYYY-MM-DD",
    "relative": "today" | "tomorrow" | "this_weekend" | "next_week" | "this_week"
  },
  "pace": { "min": number, "max": number },
  "distance": { "min": number, "max": number },
  "community": "slug",
  "chapter": "name",
  "discipline": "road" | "gravel" | "mtb" | "mixed"
}"""


@dataclass
class LocationQuery:
    name: Optional[str] = None
    use_user_location: bool = False


@dataclass
class DateRange:
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    relative: Optional[str] = None


@dataclass
class NumberRange:
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass
class ParsedQuery:
    intent: str = "unknown"
    location: Optional[LocationQuery] = None
    radius: Optional[float] = None
    date_range: Optional[DateRange] = None
    pace: Optional[NumberRange] = None
    distance: Optional[NumberRange] = None
    community: Optional[str] = None
    chapter: Optional[str] = None
    discipline: Optional[str] = None
    raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedQuery":
        """Build from the model's JSON, ignoring fields of the wrong shape."""
        intent = data.get("intent")
        query = cls(intent=intent if intent in INTENTS else "unknown", raw=data)

        location = data.get("location")
        if isinstance(location, dict):
            query.location = LocationQuery(
                name=location.get("name") or None,
                use_user_location=bool(location.get("useUserLocation")),
            )

        query.radius = _number(data.get("radius"))

        date_range = data.get("dateRange")
        if isinstance(date_range, dict):
            relative = date_range.get("relative")
            query.date_range = DateRange(
                date_from=date_range.get("from") or None,
                date_to=date_range.get("to") or None,
                relative=relative if relative in RELATIVE_RANGES else None,
            )

        for key in ("pace", "distance"):
            value = data.get(key)
            if isinstance(value, dict):
                setattr(query, key, NumberRange(_number(value.get("min")), _number(value.get("max"))))

        for key in ("community", "chapter", "discipline"):
            value = data.get(key)
            if isinstance(value, str) and value:
                setattr(query, key, value)
        return query


def _number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_user_prompt(message: str, today: str) -> str:
    return (
        f"Parse this cycling ride search query. Today is {today}. "
        "Return ONLY valid JSON, no explanation.\n\n"
        f'Query: "{message}"\n\n'
        "Return JSON matching this schema (omit null/undefined fields):\n"
        f"{_SCHEMA}"
    )


def parse_ride_query(message: str, today: str) -> ParsedQuery:
    """Parse *message* into a :class:`ParsedQuery`.

    *today* is an ISO date (``YYYY-MM-DD``) so relative phrases resolve
    correctly.  Any API or parsing failure yields ``intent="unknown"``.
    """
    try:
        client = get_openai_client()
        response = client.chat.completions.create(
            model=GROQ_MODEL,
            messages=[
                {"role": "system", "content": QUERY_PARSER_SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(message, today)},
            ],
            temperature=QUERY_PARSER_TEMPERATURE,
            max_tokens=QUERY_PARSER_MAX_TOKENS,
        )
        content = response.choices[0].message.content if response.choices else None
    except Exception as e:
        logger.error("Groq parsing error: %s", e)
        return ParsedQuery()

    if not content:
        return ParsedQuery()

    match = _JSON_BLOCK.search(content)
    if not match:
        logger.warning("No JSON object in parser response: %r", content[:200])
        return ParsedQuery()

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON from query parser: %s", e)
        return ParsedQuery()
    if not isinstance(data, dict):
        return ParsedQuery()

    parsed = ParsedQuery.from_dict(data)
    logger.info("Parsed ride query %r -> intent=%s", message, parsed.intent)
    return parsed
