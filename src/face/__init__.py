"""Face detection, age/gender annotation and labeled face matching.

Thin orchestration over InsightFace: load the model pack once, detect faces,
build labeled reference descriptors and match query images against them.
"""
from src.face.detector import DetectionResult, detect_faces
from src.face.exceptions import (
    DescriptorDimensionError,
    FaceApiError,
    ImageEncodeError,
    ImageReadError,
    InvalidArgumentError,
    ModelLoadError,
)
from src.face.gallery import build_descriptors, load_descriptor_sets, save_descriptor_sets
from src.face.loader import FaceApiOptions, get_nets, prepare_face_api
from src.face.matcher import FaceMatcher, MatcherConfig, RecognitionResult, recognize_faces
from src.face.records import FaceEntry, FaceRecord, Gender, LabeledDescriptorSet, MatchResult, translate_gender

__all__ = [
    "DescriptorDimensionError",
    "DetectionResult",
    "FaceApiError",
    "FaceApiOptions",
    "FaceEntry",
    "FaceMatcher",
    "FaceRecord",
    "Gender",
    "ImageEncodeError",
    "ImageReadError",
    "InvalidArgumentError",
    "LabeledDescriptorSet",
    "MatchResult",
    "MatcherConfig",
    "ModelLoadError",
    "RecognitionResult",
    "build_descriptors",
    "detect_faces",
    "get_nets",
    "load_descriptor_sets",
    "prepare_face_api",
    "recognize_faces",
    "save_descriptor_sets",
    "translate_gender",
]
