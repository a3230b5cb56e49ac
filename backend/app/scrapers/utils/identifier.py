"""Deal identifier extraction for Algumon listing URLs.

Every Algumon deal page lives under ``/l/d/{digits}``; that digit run is the
stable business key used for deduplication across categories and cycles.

Examples:
    'https://www.algumon.com/l/d/939539' -> '939539'
    'https://www.algumon.com/l/d/939539?v=abc&t=123' -> '939539'
"""

import re
from typing import Optional, Tuple

# Ordered rules, first match wins. The canonical listing path comes first;
# the rest cover query-parameter and alternate path variants.
DEAL_ID_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"/l/d/(\d+)", re.ASCII),
    re.compile(r"deal_id[=:](\d+)", re.ASCII),
    re.compile(r"/deal/(\d+)", re.ASCII),
    re.compile(r"id[=:](\d+)", re.ASCII),
)

# Matched with fullmatch(): digits only, 3 to 10 of them
VALID_DEAL_ID = re.compile(r"\d{3,10}", re.ASCII)


def extract_deal_id(ref: Optional[str]) -> Optional[str]:
    """Extract the deal identifier from a listing reference.

    Args:
        ref: Absolute or relative listing URL

    Returns:
        The embedded digit sequence, or None if no rule matches
    """
    if not ref or not isinstance(ref, str):
        return None

    for pattern in DEAL_ID_PATTERNS:
        match = pattern.search(ref)
        if match:
            return match.group(1)

    return None


def is_valid_deal_id(deal_id: Optional[str]) -> bool:
    """Check the identifier shape: digits only, 3 to 10 characters."""
    if not deal_id or not isinstance(deal_id, str):
        return False
    return VALID_DEAL_ID.fullmatch(deal_id) is not None


def composite_key(deal_id: str) -> str:
    """Namespaced key used as the stored row id for cross-system joins."""
    return f"algumon-{deal_id}"
