from __future__ import annotations

import sys
import threading
import time

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import cv2
import numpy as np
import pytest

# Ensure repo root is on sys.path so tests can import the `src` package.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.config import SUPPORTED_DETECTION_NETWORKS
from src.face import loader


@dataclass
class FaceSpec:
    """A face the fake detector reports for a given image."""

    bbox: Tuple[float, float, float, float]  # xyxy
    embedding: Sequence[float]
    score: float = 0.9


def _kps_for(bbox) -> np.ndarray:
    x1, y1, x2, y2 = bbox
    cx, cy = (x1 + x2) / 2.0, (y1 + y2) / 2.0
    return np.array([[cx - 10, cy - 10], [cx + 10, cy - 10], [cx, cy], [cx - 8, cy + 10], [cx + 8, cy + 10]], np.float32)


def _scene_key(img: np.ndarray) -> int:
    # Each synthetic test image is filled with one distinct gray value.
    return int(img[0, 0, 0])


class FakeDetModel:
    taskname = "detection"

    def __init__(self, scenes: Dict[int, List[FaceSpec]]):
        self.scenes = scenes

    def detect(self, img, max_num=0, metric="default"):
        specs = self.scenes.get(_scene_key(img), [])
        if not specs:
            return np.zeros((0, 5), dtype=np.float32), None
        bboxes = np.array([[*s.bbox, s.score] for s in specs], dtype=np.float32)
        kpss = np.stack([_kps_for(s.bbox) for s in specs], axis=0)
        return bboxes, kpss


class FakeLandmarkModel:
    taskname = "landmark_2d_106"

    def get(self, img, face):
        x1, y1, x2, y2 = [float(v) for v in face.bbox]
        pts = np.stack([np.linspace(x1, x2, 106), np.linspace(y1, y2, 106)], axis=1).astype(np.float32)
        face["landmark_2d_106"] = pts
        return pts


class FakeSession:
    def __init__(self, pred):
        self.pred = np.asarray(pred, dtype=np.float32)
        self.calls = 0

    def run(self, output_names, feed):
        self.calls += 1
        return [self.pred.reshape(1, -1)]


class FakeGenderAgeModel:
    taskname = "genderage"
    input_size = (96, 96)
    input_mean = 0.0
    input_std = 1.0
    input_name = "data"
    output_names = ["fc1"]

    def __init__(self, pred=(0.1, 2.0, 0.31)):
        # logits (female, male), age / 100
        self.session = FakeSession(pred)


class FakeRecognitionModel:
    taskname = "recognition"

    def __init__(self, scenes: Dict[int, List[FaceSpec]]):
        self.scenes = scenes

    def get(self, img, face):
        for s in self.scenes.get(_scene_key(img), []):
            if np.allclose(np.asarray(s.bbox, np.float32), np.asarray(face.bbox, np.float32)):
                face["embedding"] = np.asarray(s.embedding, dtype=np.float32)
                return face.embedding
        raise AssertionError(f"unexpected face bbox {face.bbox}")


class FakeFaceAnalysis:
    """Stands in for insightface.app.FaceAnalysis; reports faces from `scenes`."""

    scenes: Dict[int, List[FaceSpec]] = {}
    instances: List["FakeFaceAnalysis"] = []
    init_delay = 0.0
    _instances_lock = threading.Lock()

    def __init__(self, name="buffalo_l", root="~/.insightface", allowed_modules=None, **kwargs):
        if self.init_delay:
            time.sleep(self.init_delay)
        self.name = name
        self.root = root
        self.allowed_modules = allowed_modules
        self.kwargs = kwargs
        self.prepare_kwargs = None
        self.models = {
            "detection": FakeDetModel(self.scenes),
            "landmark_2d_106": FakeLandmarkModel(),
            "genderage": FakeGenderAgeModel(),
            "recognition": FakeRecognitionModel(self.scenes),
        }
        self.det_model = self.models["detection"]
        with self._instances_lock:
            FakeFaceAnalysis.instances.append(self)

    def prepare(self, ctx_id, det_thresh=0.5, det_size=(640, 640)):
        self.prepare_kwargs = {"ctx_id": ctx_id, "det_thresh": det_thresh, "det_size": det_size}


def make_weights_dir(root: Path, network: str = "buffalo_l") -> Path:
    pack = root / "models" / network
    pack.mkdir(parents=True, exist_ok=True)
    for name in SUPPORTED_DETECTION_NETWORKS[network]:
        (pack / name).write_bytes(b"onnx")
    return root


class FakeFaceApi:
    def __init__(self, tmp_path: Path, models: loader.FaceModels):
        self.tmp_path = tmp_path
        self.models = models
        self.scenes = FakeFaceAnalysis.scenes
        self._next_key = 10

    @property
    def app(self) -> FakeFaceAnalysis:
        return FakeFaceAnalysis.instances[-1]

    def add_image(self, faces: Sequence[FaceSpec] = (), size=(240, 320)) -> str:
        """Write a PNG whose faces (as seen by the fake detector) are `faces`."""
        key = self._next_key
        self._next_key += 10
        self.scenes[key] = list(faces)
        img = np.full((size[0], size[1], 3), key, dtype=np.uint8)
        path = self.tmp_path / f"scene_{key}.png"
        assert cv2.imwrite(str(path), img)
        return str(path)


@pytest.fixture
def weights_dir(tmp_path: Path) -> Path:
    return make_weights_dir(tmp_path / "weights")


@pytest.fixture
def fake_face_api(tmp_path: Path, weights_dir: Path, monkeypatch: pytest.MonkeyPatch) -> FakeFaceApi:
    FakeFaceAnalysis.scenes = {}
    FakeFaceAnalysis.instances = []
    FakeFaceAnalysis.init_delay = 0.0
    models = loader.FaceModels(weights_dir)
    monkeypatch.setattr(loader, "FaceAnalysis", FakeFaceAnalysis)
    monkeypatch.setattr(loader, "_MODELS", models)
    return FakeFaceApi(tmp_path, models)


def unit(*values: float) -> List[float]:
    v = np.asarray(values, dtype=np.float32)
    return list(v / np.linalg.norm(v))
