from typing import Dict, Optional, Tuple

import numpy as np


def serialize_face_record(record, frame_shape: Optional[Tuple[int, int]] = None, with_descriptor: bool = True) -> Dict:
    """Serialize a FaceRecord into JSON-safe form and optionally add normalized coords.

    record: FaceRecord-like object with bbox (x, y, w, h), landmarks, age, gender,
        gender_probability, descriptor, score
    frame_shape: (h, w)
    """
    x, y, w, h = [int(v) for v in record.bbox]
    out: Dict = {
        "bbox": [x, y, w, h],
        "center": [int(x + w / 2), int(y + h / 2)],
        "score": float(record.score),
        "age": float(record.age),
        "gender": str(record.gender),
        "genderProbability": float(record.gender_probability),
        "landmarks": [[round(float(px), 2), round(float(py), 2)] for px, py in np.asarray(record.landmarks).reshape(-1, 2)],
    }

    descriptor = np.asarray(record.descriptor, dtype=np.float32).reshape(-1)
    out["descriptor_norm"] = float(np.linalg.norm(descriptor))
    if with_descriptor:
        out["descriptor"] = [float(v) for v in descriptor]

    if frame_shape is not None:
        fh, fw = int(frame_shape[0]), int(frame_shape[1])
        if fh > 0 and fw > 0:
            out["bbox_norm"] = [round(x / fw, 4), round(y / fh, 4), round(w / fw, 4), round(h / fh, 4)]

    return out


def serialize_match_result(result, frame_shape: Optional[Tuple[int, int]] = None, with_descriptor: bool = False) -> Dict:
    """Serialize a MatchResult: display fields plus the real nearest match."""
    return {
        "label": result.matched_label,
        "bestMatchDistance": float(result.distance),
        "nearestLabel": result.nearest_label,
        "nearestDistance": float(result.nearest_distance),
        "detection": serialize_face_record(result.detection, frame_shape, with_descriptor=with_descriptor),
    }
