from pathlib import Path

# 模型权重根目录（固定位置，不可配置）：InsightFace 模型包位于 weights/models/<pack>/
WEIGHTS_DIR = Path(__file__).resolve().parents[1] / "weights"

# 支持的检测网络（InsightFace 模型包） -> 必需的 ONNX 文件
# 顺序：检测、106 点关键点、性别年龄、识别
SUPPORTED_DETECTION_NETWORKS = {
    "buffalo_l": ("det_10g.onnx", "2d106det.onnx", "genderage.onnx", "w600k_r50.onnx"),
    "buffalo_m": ("det_2.5g.onnx", "2d106det.onnx", "genderage.onnx", "w600k_r50.onnx"),
    "buffalo_s": ("det_500m.onnx", "2d106det.onnx", "genderage.onnx", "w600k_mbf.onnx"),
}
DEFAULT_DETECTION_NETWORK = "buffalo_l"
DEFAULT_MIN_CONFIDENCE = 0.5
DEFAULT_DET_SIZE = 640

# FaceAnalysis 加载的模块（检测 + 关键点 + 性别年龄 + 识别）
ALLOWED_MODULES = ["detection", "landmark_2d_106", "genderage", "recognition"]

# 最佳匹配距离超过该值则视为未匹配
MATCH_DISTANCE_THRESHOLD = 0.5
UNMATCHED_TEXT = "未匹配"

GENDER_TEXT = {
    "male": "男",
    "female": "女",
}
UNKNOWN_GENDER_TEXT = "未知"

# 常见系统字体候选（macOS/Windows/Linux），按需扩展
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/System/Library/Fonts/STHeiti Light.ttc",
    "/Library/Fonts/Arial Unicode.ttf",
    "/System/Library/Fonts/Supplemental/STHeiti.ttf",
    # Windows
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\simsun.ttc",
    # 常见 Linux 字体：中文字体必须放在西文字体之前
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/arphic/uming.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
]
