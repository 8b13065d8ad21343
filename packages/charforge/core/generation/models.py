"""Request and result models for character generation.

A ``GenerationRequest`` is the immutable description of one character image.
Two requests with the same visual attributes are the same logical request no
matter how they were built; ``canonical_key`` makes that identity a string.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class AgeGroup(str, Enum):
    KID = "kid"
    PRETEEN = "preteen"
    TEEN = "teen"
    YOUNG_ADULT = "young_adult"
    ADULT = "adult"


class SkinTone(str, Enum):
    PORCELAIN = "porcelain"
    FAIR = "fair"
    LIGHT = "light"
    MEDIUM = "medium"
    OLIVE = "olive"
    BROWN = "brown"
    DARK = "dark"
    DEEP = "deep"


class EyeColor(str, Enum):
    DARK = "dark"
    BROWN = "brown"
    BLUE = "blue"
    GREEN = "green"
    HAZEL = "hazel"
    GREY = "grey"


class HairStyle(str, Enum):
    BOB = "bob"
    PONYTAIL = "ponytail"
    BUNS = "buns"
    LONG = "long"
    PIXIE = "pixie"
    UNDERCUT = "undercut"
    QUIFF = "quiff"
    SIDEPART = "sidepart"
    BUZZ = "buzz"
    COMBOVER = "combover"
    MESSY = "messy"
    AFRO = "afro"
    CURLY = "curly"


class HairColor(str, Enum):
    BLACK = "black"
    DARK_BROWN = "dark_brown"
    BROWN = "brown"
    AUBURN = "auburn"
    GINGER = "ginger"
    DARK_BLONDE = "dark_blonde"
    BLONDE = "blonde"
    PLATINUM = "platinum"
    GREY = "grey"
    WHITE = "white"
    BLUE = "blue"
    PURPLE = "purple"


class ClothingItem(str, Enum):
    TSHIRT = "tshirt"
    HOODIE = "hoodie"
    SWEATER = "sweater"
    JACKET = "jacket"
    TANK = "tank"
    DRESS = "dress"
    BLOUSE = "blouse"
    POLO = "polo"
    BUTTONUP = "buttonup"
    HENLEY = "henley"


class ClothingColor(str, Enum):
    WHITE = "white"
    BLACK = "black"
    NAVY = "navy"
    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"
    PURPLE = "purple"
    PINK = "pink"
    ORANGE = "orange"
    TEAL = "teal"


class Accessory(str, Enum):
    NONE = "none"
    GLASSES = "glasses"
    SUNGLASSES = "sunglasses"
    HEADPHONES = "headphones"
    CAP = "cap"
    BEANIE = "beanie"


# Fields that never change the generated image.
NON_VISUAL_FIELDS = frozenset({"cache"})


class GenerationRequest(BaseModel):
    """Visual attributes of one character image.

    Accepts python names (``hair_style``) or wire names (``hairStyle``).
    ``accessories`` is a set: order and duplicates are normalized away.
    ``cache=False`` bypasses the local cache for this call only; it is not part
    of the request's identity.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    gender: Gender
    age_group: AgeGroup | None = None
    skin_tone: SkinTone | None = None
    hair_style: HairStyle | None = None
    hair_color: HairColor | None = None
    clothing: ClothingItem | None = None
    clothing_color: ClothingColor | None = None
    eye_color: EyeColor | None = None
    accessories: tuple[Accessory, ...] = ()
    transparent: bool = True
    cache: bool = True

    @field_validator("accessories", mode="before")
    @classmethod
    def normalize_accessories(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, (str, Accessory)):
            v = [v]
        return tuple(sorted({Accessory(item) for item in v}, key=lambda a: a.value))

    def to_payload(self) -> dict[str, Any]:
        """Wire payload: camelCase names, unset attributes and ``cache`` omitted."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude=set(NON_VISUAL_FIELDS),
        )

    def cache_key(self) -> str:
        return canonical_key(self)


def canonical_key(request: GenerationRequest | Mapping[str, Any]) -> str:
    """Deterministic cache key for a request.

    Compact JSON of the visual attributes with sorted keys; the bypass flag is
    excluded, so requests differing only in ``cache`` share a key.

    Example:
        >>> canonical_key({"gender": "female", "hairStyle": "bob", "transparent": True})
        '{"accessories":[],"gender":"female","hairStyle":"bob","transparent":true}'
    """
    if not isinstance(request, GenerationRequest):
        request = GenerationRequest.model_validate(request)
    return json.dumps(
        request.to_payload(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


class GenerationResult(BaseModel):
    """Outcome of one ``generate`` call.

    Args:
        image: Image reference (local ``file://``/``data:`` URI or remote URL)
        cached: Whether the image was served from the local cache
        cache_key: Canonical key of the request
        duration_ms: Wall time of the call
    """

    model_config = ConfigDict(frozen=True)

    image: str
    cached: bool
    cache_key: str
    duration_ms: float | None = Field(default=None, ge=0.0)
