from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import cv2
import numpy as np

from insightface.app import FaceAnalysis
from insightface.app.common import Face
from insightface.utils import face_align

from src.face.annotator import annotate_detections, encode_jpeg
from src.face.exceptions import ImageReadError, InvalidArgumentError
from src.face.loader import get_face_app
from src.face.records import FaceRecord, Gender
from src.utils.log import get_logger
from src.utils.math import softmax
from src.utils.serializer import serialize_face_record

logger = get_logger(__name__)

PathLike = Union[str, Path]


@dataclass
class DetectionResult:
    """`detect_faces` 的返回值。

    raw: 完整的人脸记录（检测顺序）
    image: 带标注的 BGR 图像副本
    """

    raw: List[FaceRecord]
    image: np.ndarray
    source: str = ""
    _jpeg: Optional[bytes] = field(default=None, repr=False)

    @property
    def res(self) -> List[Dict[str, Any]]:
        return [r.to_json() for r in self.raw]

    def to_json(self) -> List[Dict[str, Any]]:
        return self.res

    def raw_json(self, with_descriptor: bool = True) -> List[Dict[str, Any]]:
        return [serialize_face_record(r, self.image.shape, with_descriptor=with_descriptor) for r in self.raw]

    def to_jpeg(self) -> bytes:
        if self._jpeg is None:
            self._jpeg = encode_jpeg(self.image)
        return self._jpeg


def require_path(image_path: Optional[PathLike], name: str = "imagePath") -> str:
    if image_path is None or not str(image_path).strip():
        raise InvalidArgumentError(f"请输入 {name}")
    return str(image_path)


def read_image(image_path: PathLike) -> np.ndarray:
    image = cv2.imread(str(image_path))
    if image is None:
        raise ImageReadError(f"无法读取图像: {image_path}")
    return image


def _detect_boxes(app: FaceAnalysis, image: np.ndarray) -> List[Face]:
    """只运行检测模型，返回带 bbox/kps/det_score 的 Face（检测顺序）。"""
    bboxes, kpss = app.det_model.detect(image, max_num=0, metric="default")
    if bboxes is None or bboxes.shape[0] == 0:
        return []
    faces: List[Face] = []
    for i in range(int(bboxes.shape[0])):
        kps = kpss[i] if kpss is not None else None
        faces.append(Face(bbox=bboxes[i, 0:4], kps=kps, det_score=float(bboxes[i, 4])))
    return faces


def _estimate_gender_age(model, image: np.ndarray, face: Face) -> float:
    """运行性别年龄模型，写入 face.gender / face.age，返回所选性别的概率。

    与 insightface Attribute.get 相同的对齐与预处理，额外保留两路性别输出的 softmax。
    """
    x1, y1, x2, y2 = [float(v) for v in face.bbox]
    w, h = x2 - x1, y2 - y1
    center = ((x2 + x1) / 2.0, (y2 + y1) / 2.0)
    scale = model.input_size[0] / (max(w, h, 1.0) * 1.5)
    aimg, _ = face_align.transform(image, center, model.input_size[0], scale, 0)
    input_size = tuple(aimg.shape[0:2][::-1])
    blob = cv2.dnn.blobFromImage(
        aimg,
        1.0 / model.input_std,
        input_size,
        (model.input_mean, model.input_mean, model.input_mean),
        swapRB=True,
    )
    pred = np.asarray(model.session.run(model.output_names, {model.input_name: blob})[0][0], dtype=np.float32)
    probs = softmax(pred[:2])
    gender = int(np.argmax(probs))
    face["gender"] = gender
    face["age"] = max(0.0, float(pred[2]) * 100.0)
    return float(probs[gender])


def _to_record(face: Face, image_shape, gender_probability: float) -> FaceRecord:
    img_h, img_w = image_shape[:2]
    x1, y1, x2, y2 = [float(v) for v in face.bbox]
    x1, y1 = int(max(0.0, np.floor(x1))), int(max(0.0, np.floor(y1)))
    x2, y2 = int(min(float(img_w), np.ceil(x2))), int(min(float(img_h), np.ceil(y2)))

    landmarks = face.landmark_2d_106 if face.landmark_2d_106 is not None else face.kps
    landmarks = np.zeros((0, 2), dtype=np.float32) if landmarks is None else np.asarray(landmarks, np.float32)

    return FaceRecord(
        bbox=(x1, y1, max(0, x2 - x1), max(0, y2 - y1)),
        landmarks=landmarks.reshape(-1, 2),
        age=float(face.age),
        # insightface: gender 1 = male, 0 = female
        gender=Gender.MALE.value if int(face.gender) == 1 else Gender.FEMALE.value,
        gender_probability=float(min(1.0, max(0.0, gender_probability))),
        descriptor=np.asarray(face.embedding, dtype=np.float32).reshape(-1),
        score=float(face.det_score),
    )


def _analyze_face(app: FaceAnalysis, image: np.ndarray, face: Face) -> FaceRecord:
    gender_probability = 0.0
    for taskname, model in app.models.items():
        if taskname == "detection":
            continue
        if taskname == "genderage":
            gender_probability = _estimate_gender_age(model, image, face)
        else:
            model.get(image, face)
    return _to_record(face, image.shape, gender_probability)


def analyze_faces(app: FaceAnalysis, image: np.ndarray) -> List[FaceRecord]:
    """检测所有人脸，并逐一计算关键点、性别年龄与描述子。"""
    return [_analyze_face(app, image, face) for face in _detect_boxes(app, image)]


def detect_single_face(app: FaceAnalysis, image: np.ndarray) -> Optional[FaceRecord]:
    """返回置信度最高的一张人脸；未检测到时返回 None。"""
    faces = _detect_boxes(app, image)
    if not faces:
        return None
    best = max(faces, key=lambda f: float(f.det_score))
    return _analyze_face(app, image, best)


def detect_faces(image_path: PathLike) -> DetectionResult:
    """
    检测图像中的所有人脸并标注年龄/性别

    Args:
        image_path: 输入图像路径

    Returns:
        DetectionResult：raw 人脸记录、res 简化 JSON、标注图像（to_jpeg() 取 JPEG 字节）

    Raises:
        InvalidArgumentError: 未提供图像路径
        ImageReadError: 图像无法读取
        ModelLoadError: 模型加载失败
    """
    path = require_path(image_path, "imagePath")
    app = get_face_app()
    image = read_image(path)

    records = analyze_faces(app, image)
    if not records:
        logger.warning(f"在 {path} 中未检测到人脸")
    else:
        logger.info(f"在 {path} 中检测到 {len(records)} 个人脸")

    return DetectionResult(raw=records, image=annotate_detections(image, records), source=path)
