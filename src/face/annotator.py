from typing import List, Sequence

import cv2
import numpy as np

from src.config import UNMATCHED_TEXT
from src.face.exceptions import ImageEncodeError
from src.face.records import FaceRecord, MatchResult, translate_gender
from src.utils.draw import draw_labeled_box, draw_text_field

MATCHED_COLOR = (0, 200, 0)
UNMATCHED_COLOR = (0, 0, 255)


def age_gender_lines(record: FaceRecord) -> List[str]:
    """年龄/性别文本框内容，例如 ['31 years', '男 (97%)']。"""
    return [
        f"{round(record.age)} years",
        f"{translate_gender(record.gender)} ({round(record.gender_probability, 2) * 100:.0f}%)",
    ]


def match_label(result: MatchResult) -> str:
    if not result.is_matched:
        return UNMATCHED_TEXT
    return f"{result.matched_label} ({(1.0 - result.distance) * 100:.2f}%)"


def _text_size_for(record: FaceRecord) -> int:
    return max(12, int(record.bbox[3] * 0.1))


def annotate_detections(image: np.ndarray, records: Sequence[FaceRecord]) -> np.ndarray:
    """返回带编号人脸框与年龄/性别文本的副本；原图不修改。"""
    out = image.copy()
    for i, record in enumerate(records):
        draw_labeled_box(out, record.xyxy, f"#{i + 1} ({record.score:.2f})")
    for record in records:
        draw_text_field(out, age_gender_lines(record), record.bottom_left, font_size=_text_size_for(record))
    return out


def annotate_matches(image: np.ndarray, results: Sequence[MatchResult]) -> np.ndarray:
    out = image.copy()
    for result in results:
        record = result.detection
        color = MATCHED_COLOR if result.is_matched else UNMATCHED_COLOR
        draw_labeled_box(out, record.xyxy, match_label(result), color=color)
        draw_text_field(out, age_gender_lines(record), record.bottom_left, font_size=_text_size_for(record))
    return out


def encode_jpeg(image: np.ndarray, quality: int = 90) -> bytes:
    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ImageEncodeError("JPEG 编码失败")
    return buf.tobytes()
