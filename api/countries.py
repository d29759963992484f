"""ISO 3166 country code to display name lookup for performer creation."""

import logging
from typing import Optional

import pycountry

logger = logging.getLogger(__name__)


def get_country_by_iso(code: Optional[str]) -> Optional[str]:
    """Resolve an alpha-2 or alpha-3 country code to its English name.

    stash-box stores performer countries as ISO codes ("US", "CZE"); local
    Stash stores the name. Unknown or empty codes return None.
    """
    if not code:
        return None
    code = code.strip().upper()
    if len(code) == 2:
        country = pycountry.countries.get(alpha_2=code)
    elif len(code) == 3:
        country = pycountry.countries.get(alpha_3=code)
    else:
        country = None

    if country is None:
        logger.debug(f"Unknown country code: {code}")
        return None
    return getattr(country, "common_name", None) or country.name
