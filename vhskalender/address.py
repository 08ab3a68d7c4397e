"""
Venue text -> postal address.

The site only prints loose venue labels ("VHS in Anklam, Saal Demminer Str. 15",
"Turnhalle St. Otto Zinnowitz"). For calendars and maps we want a full postal
address, so known venues are mapped through an ordered rule list:

- rules match on a lower-cased, diacritic-free version of the label
- the first matching rule wins
- specific venues come before the generic "VHS + city" rules
- a final rule maps a bare "VHS" to the address of the location being crawled

No match -> "" (the caller keeps the raw label).
"""

from __future__ import annotations

import re
import unicodedata
from typing import Callable, NamedTuple, Optional

VHS_NAME = "Volkshochschule Vorpommern-Greifswald"

ANKLAM_MARKT = f"{VHS_NAME}, Markt 7, 17389 Anklam"
ANKLAM_DEMMINER = f"{VHS_NAME}, Demminer Str. 15, 17389 Anklam"
PASEWALK_VHS = f"{VHS_NAME}, Gemeindewiesenweg 8, 17309 Pasewalk"
GREIFSWALD_VHS = f"{VHS_NAME}, Martin-Luther-Str. 7a, 17489 Greifswald"

# Address of the main VHS house per crawled location id
VHS_BY_LOCATION = {
    "anklam": ANKLAM_MARKT,
    "pasewalk": PASEWALK_VHS,
    "greifswald": GREIFSWALD_VHS,
}


def normalize_venue(text: str) -> str:
    """Lower-case and strip diacritics ("Löcknitz" -> "locknitz")."""
    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _has(*patterns: str) -> Callable[[str, Optional[str]], bool]:
    compiled = [re.compile(p) for p in patterns]
    return lambda n, _location_id: all(p.search(n) for p in compiled)


class AddressRule(NamedTuple):
    name: str
    matches: Callable[[str, Optional[str]], bool]
    # None: resolve through the caller's location id
    address: Optional[str]


RULES: tuple[AddressRule, ...] = (
    # specific venues
    AddressRule(
        "Runge-Gymnasium Wolgast",
        _has(r"runge", r"wolgast"),
        "Runge-Gymnasium, Schulstraße 1, 17438 Wolgast",
    ),
    AddressRule(
        "Turnhalle St. Otto Zinnowitz",
        lambda n, _: bool(re.search(r"st\.?\s*otto|otto\s+zinnowitz", n)),
        "Turnhalle, St. Otto Zinnowitz, Dr.-Wachsmann-Str. 29, 17454 Zinnowitz",
    ),
    AddressRule(
        "EDPG Löcknitz",
        _has(r"edpg", r"loecknitz|locknitz"),
        "Europaschule Deutsch - Polnisches Gymnasium, Friedrich-Engels-Straße 5-6, 17321 Löcknitz",
    ),
    AddressRule(
        "Gartenanlage Erholung Pasewalk",
        _has(r"erholung", r"pasewalk"),
        "Kleingartenverein Erholung e.V., 17309 Pasewalk",
    ),
    AddressRule(
        "Multiples Haus Meiersberg",
        _has(r"multiples?\s+haus\s+meiersberg"),
        "Multiples Haus Meiersberg, Dorfstraße 21 a, 17375 Meiersberg",
    ),
    AddressRule(
        "Haus an der Schleuse Torgelow",
        _has(r"haus\s+an\s+der\s+schleuse", r"torgelow"),
        "Haus an der Schleuse, Schleusenstraße 5b, 17358 Torgelow",
    ),
    AddressRule(
        "Ueckermünde Regionalschule Gymnastikhalle",
        _has(r"ueckermunde|uckermunde", r"regionalschule|regionale\s+schule", r"gymnastikhalle"),
        'Gymnastikhalle, Regionale Schule "Ehm Welk", Goethestraße 3, 17373 Ueckermünde',
    ),
    AddressRule(
        "Ferdinandshof Alte Schule",
        _has(r"ferdinandshof", r"alte\s+schule"),
        '"Alte Schule" Ferdinandshof, Schulstraße 4, 17379 Ferdinandshof',
    ),
    AddressRule(
        "Grambin Dojo",
        _has(r"grambin", r"dorf(strasse|straße|str\.)", r"\b65\b"),
        "Higashi Dojo, Dorfstraße 65, 17375 Grambin",
    ),
    AddressRule(
        "Greifswald Alte Feuerwehr",
        _has(r"alte\s+feuerwehr", r"greifswald"),
        "Alte Feuerwehr, Baderstraße 23, 17489 Greifswald",
    ),
    # VHS houses with a street in the label
    AddressRule(
        "VHS Anklam Markt 7",
        _has(r"vhs.*anklam", r"markt\s*7"),
        ANKLAM_MARKT,
    ),
    AddressRule(
        "VHS Anklam Demminer Str. 15",
        _has(r"vhs.*anklam", r"demminer\s*str(\.|asse|aße)?\s*15"),
        ANKLAM_DEMMINER,
    ),
    # generic "VHS + city"
    AddressRule("VHS Pasewalk", _has(r"vhs", r"pasewalk"), PASEWALK_VHS),
    AddressRule("VHS Greifswald", _has(r"vhs", r"greifswald"), GREIFSWALD_VHS),
    # bare "VHS" -> house of the location being crawled
    AddressRule(
        "VHS by location context",
        lambda n, location_id: bool(location_id) and bool(re.search(r"vhs", n)),
        None,
    ),
)


def normalize_address(raw: str, location_id: Optional[str] = None) -> str:
    """
    Map a venue label to a canonical postal address, or "" when no rule matches.
    """
    n = normalize_venue(raw)
    for rule in RULES:
        if not rule.matches(n, location_id):
            continue
        if rule.address is None:
            return VHS_BY_LOCATION.get((location_id or "").lower(), "")
        return rule.address
    return ""
