"""Data models for the scene tagger.

Local records come from the user's Stash instance; remote records come from a
stash-box endpoint (StashDB, FansDB, ...). Local IDs are installation-specific,
stash-box IDs are universal and are tied to local records via stash_ids.

All models are built from the raw GraphQL dicts with ``from_dict``.
"""
from dataclasses import dataclass, field
from typing import Optional


# Local Stash fingerprint types -> stash-box fingerprint algorithms
FINGERPRINT_TYPES = {
    "md5": "MD5",
    "oshash": "OSHASH",
    "phash": "PHASH",
}


@dataclass(frozen=True)
class StashID:
    """Cross-reference from a local entity to a stash-box entity."""
    endpoint: str
    stash_id: str

    @classmethod
    def from_dict(cls, data: dict) -> "StashID":
        return cls(endpoint=data["endpoint"], stash_id=data["stash_id"])

    def to_dict(self) -> dict:
        return {"endpoint": self.endpoint, "stash_id": self.stash_id}


@dataclass
class LocalScene:
    """A scene in the local Stash library."""
    id: str
    path: str = ""
    title: Optional[str] = None
    date: Optional[str] = None
    details: Optional[str] = None
    urls: list[str] = field(default_factory=list)
    duration: Optional[float] = None
    checksum: Optional[str] = None  # MD5
    oshash: Optional[str] = None
    phash: Optional[str] = None
    studio_id: Optional[str] = None
    studio_name: Optional[str] = None
    performer_ids: list[str] = field(default_factory=list)
    performer_names: list[str] = field(default_factory=list)
    tag_ids: list[str] = field(default_factory=list)
    stash_ids: list[StashID] = field(default_factory=list)
    organized: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "LocalScene":
        """Build from a Stash findScene(s) result.

        Path, duration and hashes come from the primary (first) file.
        """
        files = data.get("files") or []
        primary = files[0] if files else {}
        hashes = {}
        for fp in primary.get("fingerprints") or []:
            fp_type = (fp.get("type") or "").lower()
            if fp_type in FINGERPRINT_TYPES and fp.get("value"):
                hashes[fp_type] = str(fp["value"])

        studio = data.get("studio") or {}
        performers = data.get("performers") or []
        urls = data.get("urls") or []
        if isinstance(urls, str):
            urls = [urls] if urls else []

        return cls(
            id=str(data["id"]),
            path=primary.get("path") or "",
            title=data.get("title") or None,
            date=data.get("date") or None,
            details=data.get("details") or None,
            urls=list(urls),
            duration=primary.get("duration"),
            checksum=hashes.get("md5"),
            oshash=hashes.get("oshash"),
            phash=hashes.get("phash"),
            studio_id=str(studio["id"]) if studio.get("id") else None,
            studio_name=studio.get("name"),
            performer_ids=[str(p["id"]) for p in performers],
            performer_names=[p.get("name") or "" for p in performers],
            tag_ids=[str(t["id"]) for t in (data.get("tags") or [])],
            stash_ids=[StashID.from_dict(s) for s in (data.get("stash_ids") or [])],
            organized=bool(data.get("organized", False)),
        )

    @property
    def hashes(self) -> list[tuple[str, str]]:
        """(algorithm, hash) pairs in lookup order: MD5, OSHASH, PHASH."""
        pairs = []
        if self.checksum:
            pairs.append(("MD5", self.checksum))
        if self.oshash:
            pairs.append(("OSHASH", self.oshash))
        if self.phash:
            pairs.append(("PHASH", self.phash))
        return pairs

    def stash_id_for(self, endpoint: str) -> Optional[str]:
        for sid in self.stash_ids:
            if sid.endpoint == endpoint:
                return sid.stash_id
        return None


@dataclass(frozen=True)
class Fingerprint:
    hash: str
    algorithm: str
    duration: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Fingerprint":
        return cls(
            hash=data["hash"],
            algorithm=data.get("algorithm") or "",
            duration=data.get("duration"),
        )


@dataclass(frozen=True)
class RemoteURL:
    url: str
    type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteURL":
        url_type = data.get("type")
        if url_type is None and data.get("site"):
            url_type = (data["site"].get("name") or "").upper() or None
        return cls(url=data["url"], type=url_type)


@dataclass(frozen=True)
class RemoteImage:
    id: str
    url: str
    width: Optional[int] = None
    height: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteImage":
        return cls(
            id=str(data.get("id") or ""),
            url=data["url"],
            width=data.get("width"),
            height=data.get("height"),
        )


@dataclass(frozen=True)
class BodyModification:
    location: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Measurements:
    band_size: Optional[int] = None
    cup_size: Optional[str] = None
    waist: Optional[int] = None
    hip: Optional[int] = None


def _urls(raw: Optional[list]) -> tuple[RemoteURL, ...]:
    return tuple(RemoteURL.from_dict(u) for u in (raw or []) if u and u.get("url"))


def _images(raw: Optional[list]) -> tuple[RemoteImage, ...]:
    return tuple(RemoteImage.from_dict(i) for i in (raw or []) if i and i.get("url"))


def sort_images(images, orientation: str = "landscape") -> list[RemoteImage]:
    """Order images best first for the given orientation.

    Images matching the orientation come first, then the larger dimension
    along that orientation (width for landscape, height for portrait).
    Missing dimensions count as 1.
    """
    def sort_key(image: RemoteImage):
        width = image.width or 1
        height = image.height or 1
        if orientation == "portrait":
            return (not height / width > 1, -height)
        return (not width / height > 1, -width)

    return sorted(images, key=sort_key)


def _body_mods(raw: Optional[list]) -> tuple[BodyModification, ...]:
    return tuple(
        BodyModification(location=m.get("location"), description=m.get("description"))
        for m in (raw or [])
    )


@dataclass(frozen=True)
class RemoteStudio:
    id: str
    name: str
    urls: tuple[RemoteURL, ...] = ()
    images: tuple[RemoteImage, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteStudio":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            urls=_urls(data.get("urls")),
            images=_images(data.get("images")),
        )


@dataclass(frozen=True)
class RemoteTag:
    id: str
    name: str

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteTag":
        return cls(id=data["id"], name=data.get("name") or "")


@dataclass(frozen=True)
class RemotePerformer:
    id: str
    name: str
    disambiguation: Optional[str] = None
    aliases: tuple[str, ...] = ()
    gender: Optional[str] = None
    birthdate: Optional[str] = None
    ethnicity: Optional[str] = None
    country: Optional[str] = None
    eye_color: Optional[str] = None
    hair_color: Optional[str] = None
    height: Optional[int] = None
    measurements: Measurements = Measurements()
    breast_type: Optional[str] = None
    career_start_year: Optional[int] = None
    career_end_year: Optional[int] = None
    tattoos: tuple[BodyModification, ...] = ()
    piercings: tuple[BodyModification, ...] = ()
    urls: tuple[RemoteURL, ...] = ()
    images: tuple[RemoteImage, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "RemotePerformer":
        """Parse a stash-box performer.

        Accepts both the nested schema (``birthdate { date }``,
        ``measurements { ... }``) and the flat one (``birth_date``,
        ``cup_size``, ``band_size``, ...).
        """
        birthdate = data.get("birth_date")
        if birthdate is None and isinstance(data.get("birthdate"), dict):
            birthdate = data["birthdate"].get("date")
        elif birthdate is None:
            birthdate = data.get("birthdate")

        raw_measurements = data.get("measurements") or {}
        measurements = Measurements(
            band_size=raw_measurements.get("band_size", data.get("band_size")),
            cup_size=raw_measurements.get("cup_size", data.get("cup_size")),
            waist=raw_measurements.get("waist", data.get("waist_size")),
            hip=raw_measurements.get("hip", data.get("hip_size")),
        )

        return cls(
            id=data["id"],
            name=data.get("name") or "",
            disambiguation=data.get("disambiguation"),
            aliases=tuple(data.get("aliases") or ()),
            gender=data.get("gender"),
            birthdate=birthdate,
            ethnicity=data.get("ethnicity"),
            country=data.get("country"),
            eye_color=data.get("eye_color"),
            hair_color=data.get("hair_color"),
            height=data.get("height"),
            measurements=measurements,
            breast_type=data.get("breast_type"),
            career_start_year=data.get("career_start_year"),
            career_end_year=data.get("career_end_year"),
            tattoos=_body_mods(data.get("tattoos")),
            piercings=_body_mods(data.get("piercings")),
            urls=_urls(data.get("urls")),
            images=_images(data.get("images")),
        )


@dataclass(frozen=True)
class PerformerAppearance:
    """A performer credited on a remote scene, optionally under another name."""
    performer: RemotePerformer
    as_name: Optional[str] = None


@dataclass(frozen=True)
class RemoteScene:
    """A candidate scene returned by a stash-box search."""
    id: str
    title: Optional[str] = None
    date: Optional[str] = None
    details: Optional[str] = None
    duration: Optional[int] = None
    urls: tuple[RemoteURL, ...] = ()
    images: tuple[RemoteImage, ...] = ()
    studio: Optional[RemoteStudio] = None
    performers: tuple[PerformerAppearance, ...] = ()
    tags: tuple[RemoteTag, ...] = ()
    fingerprints: tuple[Fingerprint, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteScene":
        studio = data.get("studio")
        return cls(
            id=data["id"],
            title=data.get("title"),
            date=data.get("date"),
            details=data.get("details"),
            duration=data.get("duration"),
            urls=_urls(data.get("urls")),
            images=_images(data.get("images")),
            studio=RemoteStudio.from_dict(studio) if studio else None,
            performers=tuple(
                PerformerAppearance(
                    performer=RemotePerformer.from_dict(p["performer"]),
                    as_name=p.get("as"),
                )
                for p in (data.get("performers") or [])
                if p.get("performer")
            ),
            tags=tuple(RemoteTag.from_dict(t) for t in (data.get("tags") or [])),
            fingerprints=tuple(
                Fingerprint.from_dict(f) for f in (data.get("fingerprints") or [])
            ),
        )

    @property
    def studio_url(self) -> Optional[str]:
        for url in self.urls:
            if url.type == "STUDIO":
                return url.url
        return None

    @property
    def cover_url(self) -> Optional[str]:
        images = sort_images(self.images, "landscape")
        return images[0].url if images else None

    @property
    def effective_duration(self) -> Optional[int]:
        """Scene duration, falling back to the first fingerprint's duration."""
        if self.duration:
            return self.duration
        for fp in self.fingerprints:
            if fp.duration:
                return fp.duration
        return None
