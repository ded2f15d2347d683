"""
Brazilian state (UF) to IBGE code mapping used for the cUFAutor element.
"""

from __future__ import annotations

import structlog

log = structlog.get_logger()

DEFAULT_STATE_CODE = "35"

STATE_CODES: dict[str, str] = {
    "AC": "12", "AL": "27", "AM": "13", "AP": "16", "BA": "29",
    "CE": "23", "DF": "53", "ES": "32", "GO": "52", "MA": "21",
    "MG": "31", "MS": "50", "MT": "51", "PA": "15", "PB": "25",
    "PE": "26", "PI": "22", "PR": "41", "RJ": "33", "RN": "24",
    "RO": "11", "RR": "14", "RS": "43", "SC": "42", "SE": "28",
    "SP": "35", "TO": "17",
}

_VALID_CODES = frozenset(STATE_CODES.values()) | {"91"}  # 91 = Ambiente Nacional


def resolve_state_code(jurisdiction: str) -> str:
    """
    Resolve a state abbreviation or IBGE code to the two-digit IBGE code.

    Numeric input must be a known code. An unknown abbreviation falls back
    to São Paulo (35), matching the behavior the service has always had.
    """
    value = jurisdiction.strip().upper()
    if value.isdigit():
        if value not in _VALID_CODES:
            raise ValueError(f"Unknown IBGE state code: {jurisdiction!r}")
        return value
    code = STATE_CODES.get(value)
    if code is None:
        log.warning("jurisdiction.unknown_state", state=value, fallback=DEFAULT_STATE_CODE)
        return DEFAULT_STATE_CODE
    return code
