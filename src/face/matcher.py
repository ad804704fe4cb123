from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import numpy as np

from src.config import MATCH_DISTANCE_THRESHOLD
from src.face.annotator import annotate_matches, encode_jpeg
from src.face.detector import analyze_faces, read_image, require_path
from src.face.exceptions import DescriptorDimensionError, InvalidArgumentError
from src.face.loader import get_face_app
from src.face.records import BestMatch, FaceRecord, LabeledDescriptorSet, MatchResult, descriptor_dims
from src.utils.log import get_logger
from src.utils.math import face_distances
from src.utils.serializer import serialize_match_result

logger = get_logger(__name__)


@dataclass
class MatcherConfig:
    # Best distance above this value is reported as unmatched.
    distance_threshold: float = MATCH_DISTANCE_THRESHOLD
    unmatched_label: str = ""
    unmatched_distance: float = 1.0


class FaceMatcher:
    """Nearest-label matcher over labeled descriptor sets.

    The distance to a label is the mean distance to that label's descriptors.
    Labels are scanned in input order, so on ties the first label wins.
    """

    def __init__(
        self,
        labeled_sets: Iterable[Union[LabeledDescriptorSet, Mapping[str, Any]]],
        config: Optional[MatcherConfig] = None,
    ):
        self.config = config or MatcherConfig()

        labels: List[str] = []
        mats: List[np.ndarray] = []
        ids: List[np.ndarray] = []
        dim = 0

        for s in labeled_sets:
            if not isinstance(s, LabeledDescriptorSet):
                s = LabeledDescriptorSet.from_dict(s)
            if len(s) == 0:
                logger.warning(f"标签 {s.label} 没有描述子，忽略")
                continue
            if len(descriptor_dims([s])) != 1:
                raise DescriptorDimensionError(f"标签 {s.label} 的描述子维度不一致")
            mat = np.stack(s.descriptors, axis=0).astype(np.float32, copy=False)
            if dim == 0:
                dim = int(mat.shape[1])
            if int(mat.shape[1]) != dim:
                raise DescriptorDimensionError(f"标签 {s.label} 的描述子维度为 {mat.shape[1]}，期望 {dim}")

            labels.append(s.label)
            mats.append(mat)
            ids.append(np.full((int(mat.shape[0]),), len(labels) - 1, dtype=np.int64))

        if not mats:
            raise InvalidArgumentError("至少需要一个包含描述子的标签")

        self._labels = labels
        self._matrix = np.ascontiguousarray(np.concatenate(mats, axis=0))
        self._label_ids = np.concatenate(ids, axis=0)
        self._counts = np.bincount(self._label_ids, minlength=len(labels)).astype(np.float64)

    @property
    def labels(self) -> List[str]:
        return list(self._labels)

    @property
    def dim(self) -> int:
        return int(self._matrix.shape[1])

    def label_distances(self, descriptor: np.ndarray) -> np.ndarray:
        """Mean distance from `descriptor` to each label, in label order."""
        q = np.asarray(descriptor, dtype=np.float32).reshape(-1)
        if q.shape[0] != self.dim:
            raise DescriptorDimensionError(f"描述子维度为 {q.shape[0]}，标签描述子维度为 {self.dim}")
        dists = face_distances(q, self._matrix).astype(np.float64)
        sums = np.zeros((len(self._labels),), dtype=np.float64)
        np.add.at(sums, self._label_ids, dists)
        return sums / self._counts

    def find_best_match(self, descriptor: np.ndarray) -> BestMatch:
        means = self.label_distances(descriptor)
        best = int(np.argmin(means))  # first occurrence on ties
        return BestMatch(label=self._labels[best], distance=float(means[best]))

    def match(self, record: FaceRecord) -> MatchResult:
        best = self.find_best_match(record.descriptor)
        if best.distance > float(self.config.distance_threshold):
            return MatchResult(
                detection=record,
                matched_label=self.config.unmatched_label,
                distance=float(self.config.unmatched_distance),
                nearest_label=best.label,
                nearest_distance=best.distance,
            )
        return MatchResult(
            detection=record,
            matched_label=best.label,
            distance=best.distance,
            nearest_label=best.label,
            nearest_distance=best.distance,
        )


@dataclass
class RecognitionResult:
    """`recognize_faces` 的返回值：每张人脸一个 MatchResult，以及标注图像。"""

    raw: List[MatchResult]
    image: np.ndarray
    source: str = ""
    _jpeg: Optional[bytes] = field(default=None, repr=False)

    @property
    def res(self) -> List[Dict[str, Any]]:
        return [r.to_json() for r in self.raw]

    def to_json(self) -> List[Dict[str, Any]]:
        return self.res

    def raw_json(self, with_descriptor: bool = False) -> List[Dict[str, Any]]:
        return [serialize_match_result(r, self.image.shape, with_descriptor=with_descriptor) for r in self.raw]

    def to_jpeg(self) -> bytes:
        if self._jpeg is None:
            self._jpeg = encode_jpeg(self.image)
        return self._jpeg


def recognize_faces(
    labeled_sets: Iterable[Union[LabeledDescriptorSet, Mapping[str, Any]]],
    query_image_path: Union[str, Path],
) -> RecognitionResult:
    """
    在查询图像中检测人脸，并与带标签的描述子逐一匹配

    Args:
        labeled_sets: build_descriptors 的输出（或其 to_dict() 形式）
        query_image_path: 查询图像路径

    Returns:
        RecognitionResult

    Raises:
        InvalidArgumentError: 未提供查询图像，或没有可用的标签描述子
        DescriptorDimensionError: 描述子维度不一致
        ImageReadError: 图像无法读取
        ModelLoadError: 模型加载失败
    """
    path = require_path(query_image_path, "queryImage")
    matcher = FaceMatcher(labeled_sets)
    app = get_face_app()
    image = read_image(path)

    results: List[MatchResult] = []
    for i, record in enumerate(analyze_faces(app, image)):
        result = matcher.match(record)
        results.append(result)
        logger.info(
            f"人脸 {i + 1}: {result.matched_label or '未匹配'} "
            f"(最近: {result.nearest_label}, 距离: {result.nearest_distance:.4f})"
        )

    if not results:
        logger.warning(f"在 {path} 中未检测到人脸")

    return RecognitionResult(raw=results, image=annotate_matches(image, results), source=path)
