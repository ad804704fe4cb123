from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from src.config import GENDER_TEXT, UNKNOWN_GENDER_TEXT
from src.face.exceptions import InvalidArgumentError


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


def translate_gender(gender: Optional[Any]) -> str:
    """把性别转换为显示文本：male -> 男, female -> 女, 其他 -> 未知。"""
    if isinstance(gender, Gender):
        gender = gender.value
    return GENDER_TEXT.get(gender, UNKNOWN_GENDER_TEXT) if isinstance(gender, str) else UNKNOWN_GENDER_TEXT


def _as_descriptor(vec: Any) -> np.ndarray:
    arr = np.asarray(vec, dtype=np.float32).reshape(-1)
    if arr.size == 0:
        raise InvalidArgumentError("人脸描述子不能为空")
    return arr


# 描述子可能以二维 ndarray 传入，不能用真值判断
def _or_empty(value: Any) -> Any:
    return () if value is None else value


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class FaceRecord:
    """One detected face: box, landmarks, age/gender estimate and descriptor."""

    bbox: Tuple[int, int, int, int]  # x, y, w, h
    landmarks: np.ndarray
    age: float
    gender: str
    gender_probability: float
    descriptor: np.ndarray
    score: float = 0.0

    @property
    def bottom_left(self) -> Tuple[int, int]:
        x, y, _, h = self.bbox
        return x, y + h

    @property
    def xyxy(self) -> Tuple[int, int, int, int]:
        x, y, w, h = self.bbox
        return x, y, x + w, y + h

    def to_json(self) -> Dict[str, Any]:
        return {
            "gender": self.gender,
            "genderProbability": float(self.gender_probability),
            "age": float(self.age),
        }


@dataclass(frozen=True)
class LabeledDescriptorSet:
    """Reference descriptors of one identity.

    `skipped_images` lists reference images that contributed nothing because no
    face was found in them, so callers can tell them apart from omitted images.
    """

    label: str
    descriptors: Tuple[np.ndarray, ...] = ()
    skipped_images: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "descriptors", tuple(_as_descriptor(d) for d in self.descriptors))
        object.__setattr__(self, "skipped_images", tuple(str(p) for p in self.skipped_images))

    def __len__(self) -> int:
        return len(self.descriptors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "descriptors": [[float(x) for x in d] for d in self.descriptors],
            "skippedImages": list(self.skipped_images),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LabeledDescriptorSet":
        return cls(
            label=str(data["label"]),
            descriptors=tuple(_or_empty(data.get("descriptors"))),
            skipped_images=tuple(_or_empty(_first_present(data, "skippedImages", "skipped_images"))),
        )


@dataclass(frozen=True)
class FaceEntry:
    """Descriptor builder input: a label plus reference images and/or precomputed descriptors."""

    label: str
    image_paths: Tuple[str, ...] = ()
    descriptors: Tuple[Any, ...] = ()

    def __post_init__(self):
        if not self.label:
            raise InvalidArgumentError("人脸条目缺少 label")
        object.__setattr__(self, "image_paths", tuple(str(p) for p in _or_empty(self.image_paths)))
        object.__setattr__(self, "descriptors", tuple(_or_empty(self.descriptors)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FaceEntry":
        image_paths = _first_present(data, "imagePaths", "image_paths")
        return cls(
            label=data.get("label") or "",
            image_paths=tuple(_or_empty(image_paths)),
            descriptors=tuple(_or_empty(data.get("descriptors"))),
        )

    @classmethod
    def coerce(cls, entry: Any) -> "FaceEntry":
        if isinstance(entry, cls):
            return entry
        if isinstance(entry, Mapping):
            return cls.from_dict(entry)
        raise InvalidArgumentError(f"不支持的人脸条目类型: {type(entry).__name__}")


@dataclass(frozen=True)
class BestMatch:
    label: str
    distance: float


@dataclass(frozen=True)
class MatchResult:
    """Match of one detected face.

    `matched_label`/`distance` are the display fields (forced to "" and 1.0 when
    the nearest distance is above the threshold); `nearest_label` and
    `nearest_distance` always hold the real nearest match.
    """

    detection: FaceRecord
    matched_label: str
    distance: float
    nearest_label: str = ""
    nearest_distance: float = 1.0

    @property
    def is_matched(self) -> bool:
        return bool(self.matched_label)

    def to_json(self) -> Dict[str, Any]:
        return {"label": self.matched_label, "bestMatchDistance": float(self.distance)}


def descriptor_dims(sets: Iterable[LabeledDescriptorSet]) -> Sequence[int]:
    return sorted({int(d.shape[0]) for s in sets for d in s.descriptors})

