"""
Map stash-box entities onto local Stash create inputs.

stash-box and Stash use different shapes for the same facts (gender enums,
measurements, career length, body modifications). The helpers here convert
one remote field each; the *_create_input builders assemble the full input
dicts passed to StashClient.create_*.
"""

from typing import Optional

from countries import get_country_by_iso
from models import (
    BodyModification,
    Measurements,
    RemoteImage,
    RemotePerformer,
    RemoteStudio,
    RemoteTag,
    RemoteURL,
    sort_images,
)

# stash-box GenderEnum -> Stash GenderEnum
_GENDERS = {
    "MALE": "MALE",
    "FEMALE": "FEMALE",
    "TRANSGENDER_MALE": "TRANSGENDER_MALE",
    "TRANSGENDER_FEMALE": "TRANSGENDER_FEMALE",
    "INTERSEX": "INTERSEX",
    "NON_BINARY": "NON_BINARY",
}


def format_gender(gender: Optional[str]) -> Optional[str]:
    if not gender:
        return None
    return _GENDERS.get(gender.upper())


def format_measurements(measurements: Measurements) -> str:
    """Format as "{band}{cup}-{waist}-{hip}", or "" when incomplete."""
    m = measurements
    if m.cup_size and m.waist and m.hip:
        band = m.band_size if m.band_size else ""
        return f"{band}{m.cup_size}-{m.waist}-{m.hip}"
    return ""


def format_breast_type(breast_type: Optional[str]) -> str:
    if breast_type == "FAKE":
        return "Yes"
    if breast_type == "NATURAL":
        return "No"
    return ""


def format_career_length(start: Optional[int], end: Optional[int]) -> Optional[str]:
    if start and end:
        return f"{start} - {end}"
    if start:
        return f"{start} - "
    return None


def format_body_modification(mods: tuple[BodyModification, ...] | list[BodyModification]) -> str:
    parts = []
    for mod in mods or ():
        if mod.location and mod.description:
            parts.append(f"{mod.location}, {mod.description}")
        elif mod.description or mod.location:
            parts.append(mod.description or mod.location)
    return "; ".join(parts)


def title_case(value: Optional[str]) -> str:
    """Title-case an enum-style value: BLUE_GREEN -> Blue Green."""
    if not value:
        return ""
    words = value.replace("_", " ").split()
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def get_url_by_type(urls: tuple[RemoteURL, ...] | list[RemoteURL], url_type: str) -> Optional[str]:
    for url in urls or ():
        if url.type == url_type:
            return url.url
    return None


def sort_image_urls(images: list[RemoteImage] | tuple[RemoteImage, ...], orientation: str) -> list[str]:
    return [image.url for image in sort_images(images, orientation)]


def get_image(images: list[RemoteImage] | tuple[RemoteImage, ...], orientation: str) -> Optional[str]:
    urls = sort_image_urls(images, orientation)
    return urls[0] if urls else None


def append_stash_id(existing: list[dict], endpoint: str, stash_id: str) -> list[dict]:
    """
    Add a stash id cross-reference without dropping existing ones.

    An entity already linked to this endpoint keeps its current id; links to
    other endpoints are always preserved. Duplicates are removed.
    """
    result = []
    seen = set()
    for entry in existing or []:
        key = (entry.get("endpoint"), entry.get("stash_id"))
        if key in seen:
            continue
        seen.add(key)
        result.append({"endpoint": key[0], "stash_id": key[1]})

    if not any(e["endpoint"] == endpoint for e in result):
        result.append({"endpoint": endpoint, "stash_id": stash_id})
    return result


def replace_stash_id(existing: list[dict], endpoint: str, stash_id: str) -> list[dict]:
    """Point the cross-reference for one endpoint at stash_id.

    Any previous id for that endpoint is dropped; other endpoints are kept.
    """
    kept = [e for e in existing or [] if e.get("endpoint") != endpoint]
    return append_stash_id(kept, endpoint, stash_id)


def performer_create_input(
    performer: RemotePerformer,
    endpoint: str,
    image: Optional[str] = None,
) -> dict:
    """Build a PerformerCreateInput from a stash-box performer.

    Empty fields are left out so Stash keeps its defaults.
    """
    fields = {
        "name": performer.name,
        "disambiguation": performer.disambiguation,
        "alias_list": list(performer.aliases) or None,
        "gender": format_gender(performer.gender),
        "country": get_country_by_iso(performer.country),
        "height_cm": int(performer.height) if performer.height else None,
        "ethnicity": title_case(performer.ethnicity),
        "birthdate": performer.birthdate,
        "eye_color": title_case(performer.eye_color),
        "hair_color": title_case(performer.hair_color),
        "fake_tits": format_breast_type(performer.breast_type),
        "measurements": format_measurements(performer.measurements),
        "career_length": format_career_length(
            performer.career_start_year, performer.career_end_year
        ),
        "tattoos": format_body_modification(performer.tattoos),
        "piercings": format_body_modification(performer.piercings),
        "image": image,
    }
    input_dict = {k: v for k, v in fields.items() if v not in (None, "")}

    twitter = get_url_by_type(performer.urls, "TWITTER")
    if twitter:
        input_dict["urls"] = [twitter]
    input_dict["stash_ids"] = [{"endpoint": endpoint, "stash_id": performer.id}]
    return input_dict


def studio_create_input(
    studio: RemoteStudio,
    endpoint: str,
    image: Optional[str] = None,
) -> dict:
    input_dict = {"name": studio.name}
    home = get_url_by_type(studio.urls, "HOME")
    if home:
        input_dict["url"] = home
    if image:
        input_dict["image"] = image
    input_dict["stash_ids"] = [{"endpoint": endpoint, "stash_id": studio.id}]
    return input_dict


def tag_create_input(tag: RemoteTag, endpoint: str) -> dict:
    return {
        "name": tag.name,
        "stash_ids": [{"endpoint": endpoint, "stash_id": tag.id}],
    }
