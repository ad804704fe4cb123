import io
import threading

from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple, Union

import torch

from insightface.app import FaceAnalysis

from src.config import (
    ALLOWED_MODULES,
    DEFAULT_DET_SIZE,
    DEFAULT_DETECTION_NETWORK,
    DEFAULT_MIN_CONFIDENCE,
    SUPPORTED_DETECTION_NETWORKS,
    WEIGHTS_DIR,
)
from src.face.exceptions import InvalidArgumentError, ModelLoadError
from src.utils.log import get_logger, log_duration, suppress_fds

logger = get_logger(__name__)

_OPTION_ALIASES = {
    "detectionNetwork": "detection_network",
    "minConfidence": "min_confidence",
    "detSize": "det_size",
}


@dataclass(frozen=True)
class FaceApiOptions:
    # InsightFace 模型包名称，决定检测网络（见 SUPPORTED_DETECTION_NETWORKS）
    detection_network: str = DEFAULT_DETECTION_NETWORK
    # 检测置信度阈值，低于该值的人脸不会被报告
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    # 检测输入尺寸（正方形边长）
    det_size: int = DEFAULT_DET_SIZE
    # 'auto' / 'cpu' / 'gpu'
    device: str = "auto"

    def __post_init__(self):
        if self.detection_network not in SUPPORTED_DETECTION_NETWORKS:
            raise InvalidArgumentError(
                f"不支持的检测网络: {self.detection_network}，可选: {', '.join(SUPPORTED_DETECTION_NETWORKS)}"
            )
        try:
            conf = float(self.min_confidence)
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"min_confidence 必须为数字: {self.min_confidence!r}") from None
        if not 0.0 < conf <= 1.0:
            raise InvalidArgumentError(f"min_confidence 必须在 (0, 1] 范围内: {conf}")
        object.__setattr__(self, "min_confidence", conf)
        try:
            size = int(self.det_size)
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"det_size 必须为整数: {self.det_size!r}") from None
        if size <= 0 or size % 32 != 0:
            raise InvalidArgumentError(f"det_size 必须为 32 的正整数倍: {self.det_size}")
        object.__setattr__(self, "det_size", size)
        if self.device not in ("auto", "cpu", "gpu"):
            raise InvalidArgumentError(f"不支持的设备: {self.device}")

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, Any]] = None) -> "FaceApiOptions":
        """在默认值之上合并调用方覆盖项；接受 camelCase 键名，未知键视为调用错误。"""
        overrides = {_OPTION_ALIASES.get(k, k): v for k, v in dict(overrides or {}).items()}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise InvalidArgumentError(f"未知的选项: {', '.join(unknown)}")
        return cls(**overrides)

    @property
    def required_files(self) -> Tuple[str, ...]:
        return SUPPORTED_DETECTION_NETWORKS[self.detection_network]


def _select_device(device: str) -> Tuple[List[str], int]:
    """返回 (onnxruntime providers, ctx_id)。"""
    if device == "auto":
        try:
            device = "gpu" if torch.cuda.is_available() else "cpu"
        except Exception:
            device = "cpu"
    if device == "gpu":
        return ["CUDAExecutionProvider", "CPUExecutionProvider"], 0
    return ["CPUExecutionProvider"], -1


def _check_weights(weights_dir: Path, options: FaceApiOptions) -> Path:
    pack_dir = Path(weights_dir) / "models" / options.detection_network
    if not pack_dir.is_dir():
        raise ModelLoadError(f"模型权重目录不存在: {pack_dir}")
    missing = [name for name in options.required_files if not (pack_dir / name).is_file()]
    if missing:
        raise ModelLoadError(f"模型权重缺失 ({pack_dir}): {', '.join(missing)}")
    return pack_dir


class FaceModels:
    """进程内共享的模型句柄：首次 prepare 时从磁盘加载，之后只读复用。"""

    def __init__(self, weights_dir: Union[str, Path] = WEIGHTS_DIR):
        self.weights_dir = Path(weights_dir)
        self._lock = threading.Lock()
        self._app: Optional[FaceAnalysis] = None
        self._options: Optional[FaceApiOptions] = None
        self.load_count = 0

    @property
    def is_prepared(self) -> bool:
        return self._app is not None

    @property
    def options(self) -> Optional[FaceApiOptions]:
        return self._options

    def prepare(self, options: Union[FaceApiOptions, Mapping[str, Any], None] = None) -> FaceAnalysis:
        if self._app is not None:
            self._log_ignored(options)
            return self._app

        with self._lock:
            # 等锁期间可能已有其他线程完成加载
            if self._app is not None:
                self._log_ignored(options)
                return self._app

            opts = options if isinstance(options, FaceApiOptions) else FaceApiOptions.from_mapping(options)
            pack_dir = _check_weights(self.weights_dir, opts)
            providers, ctx_id = _select_device(opts.device)

            try:
                with log_duration(logger, f"加载 InsightFace 模型 {opts.detection_network}"):
                    with suppress_fds():
                        app = FaceAnalysis(
                            name=opts.detection_network,
                            root=str(self.weights_dir),
                            providers=providers,
                            allowed_modules=list(ALLOWED_MODULES),
                        )
                    buf = io.StringIO()
                    with redirect_stdout(buf), redirect_stderr(buf):
                        app.prepare(
                            ctx_id=ctx_id,
                            det_thresh=opts.min_confidence,
                            det_size=(opts.det_size, opts.det_size),
                        )
            except Exception as e:
                logger.error(f"模型初始化失败: {e}")
                raise ModelLoadError(f"无法从 {pack_dir} 加载模型: {e}") from e

            missing = [m for m in ALLOWED_MODULES if m not in getattr(app, "models", {})]
            if missing:
                raise ModelLoadError(f"模型包 {opts.detection_network} 缺少模块: {', '.join(missing)}")

            self._options = opts
            self.load_count += 1
            self._app = app
            logger.info(
                f"已加载 InsightFace 模型: {opts.detection_network} "
                f"(min_confidence={opts.min_confidence}, providers={providers})"
            )
            return app

    def _log_ignored(self, options) -> None:
        if options is not None:
            logger.debug(f"模型已加载，忽略新的选项: {options}")


_MODELS = FaceModels()


def prepare_face_api(options: Union[FaceApiOptions, Mapping[str, Any], None] = None) -> None:
    """加载检测 / 关键点 / 性别年龄 / 识别模型。

    只有首次调用会读取磁盘；之后的调用直接返回，即使传入了不同的选项。

    Raises:
        InvalidArgumentError: 选项非法
        ModelLoadError: 权重目录或文件缺失，或模型无法加载
    """
    _MODELS.prepare(options)


def get_face_app() -> FaceAnalysis:
    """返回已加载的 FaceAnalysis（必要时使用默认选项加载）。"""
    return _MODELS.prepare()


def get_face_api_options() -> Optional[FaceApiOptions]:
    return _MODELS.options


def is_prepared() -> bool:
    return _MODELS.is_prepared


def get_nets() -> List[str]:
    """支持的检测网络名称。"""
    return list(SUPPORTED_DETECTION_NETWORKS)
