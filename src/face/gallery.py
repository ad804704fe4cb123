from __future__ import annotations

import json

from pathlib import Path
from typing import Any, Iterable, List, Mapping, Union

import numpy as np

from src.face.detector import detect_single_face, read_image
from src.face.exceptions import InvalidArgumentError
from src.face.loader import get_face_app
from src.face.records import FaceEntry, LabeledDescriptorSet
from src.utils.log import get_logger

logger = get_logger(__name__)

# Schema version of the persisted descriptor file.
SCHEMA_VERSION = "v1"


def build_descriptors(entries: Iterable[Union[FaceEntry, Mapping[str, Any]]]) -> List[LabeledDescriptorSet]:
    """Build one LabeledDescriptorSet per entry, in input order.

    Each reference image contributes the descriptor of its most confident face.
    Images without a detectable face contribute nothing and are listed in
    `skipped_images`; precomputed descriptors are appended after the image ones.

    Raises:
        InvalidArgumentError: an entry has no label or is of an unsupported type
        ImageReadError: a reference image cannot be read
    """
    entries = [FaceEntry.coerce(e) for e in entries]
    if not entries:
        return []

    app = get_face_app() if any(e.image_paths for e in entries) else None

    out: List[LabeledDescriptorSet] = []
    for entry in entries:
        descriptors: List[np.ndarray] = []
        skipped: List[str] = []

        for image_path in entry.image_paths:
            image = read_image(image_path)
            record = detect_single_face(app, image)
            if record is None:
                logger.warning(f"  {entry.label}: 在 {image_path} 中未检测到人脸，跳过")
                skipped.append(image_path)
                continue
            descriptors.append(record.descriptor)

        descriptors.extend(np.asarray(d, dtype=np.float32).reshape(-1) for d in entry.descriptors)

        labeled = LabeledDescriptorSet(entry.label, tuple(descriptors), tuple(skipped))
        logger.info(
            f"处理 {entry.label}: {len(entry.image_paths)} 张图像, "
            f"{len(entry.descriptors)} 个预计算描述子 -> {len(labeled)} 个描述子"
        )
        out.append(labeled)
    return out


def save_descriptor_sets(path: Union[str, Path], sets: Iterable[LabeledDescriptorSet]) -> Path:
    fp = Path(path)
    fp.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "schema_version": SCHEMA_VERSION,
        "labeled_descriptors": [s.to_dict() for s in sets],
    }
    with open(fp, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False)
    return fp


def load_descriptor_sets(path: Union[str, Path]) -> List[LabeledDescriptorSet]:
    fp = Path(path)
    with open(fp, "r", encoding="utf-8") as f:
        data = json.load(f)

    # A bare list is accepted as well (e.g. the host stored `to_dict()` output directly).
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict) and data.get("schema_version") == SCHEMA_VERSION:
        items = data.get("labeled_descriptors") or []
    else:
        raise InvalidArgumentError(f"无法识别的描述子文件格式: {fp}")

    return [LabeledDescriptorSet.from_dict(item) for item in items]
