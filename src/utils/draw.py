from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Optional, Sequence, Tuple

import warnings

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from src.config import FONT_LIST


_WARNED_NO_CJK_FONT = False

BOX_COLOR = (255, 0, 0)  # BGR 蓝色
TEXT_FIELD_BG = (0, 0, 0)


@lru_cache(maxsize=128)
def _load_font(font_path: str, font_size: int) -> ImageFont.FreeTypeFont:
    return ImageFont.truetype(font_path, font_size)


@lru_cache(maxsize=None)
def _cjk_font_path() -> Optional[str]:
    """FONT_LIST 中第一个能加载的字体；都不可用时返回 None。"""
    for p in FONT_LIST:
        try:
            _load_font(p, 16)
            return p
        except OSError:
            continue
    return None


@lru_cache(maxsize=64)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    """标注文字（性别“男/女”、“未匹配”、标签名）所用字体，找不到中文字体时退回 PIL 默认字体。"""
    path = _cjk_font_path()
    if path is None:
        return ImageFont.load_default()
    return _load_font(path, int(font_size))


def _warn_once_no_cjk_font_if_needed(texts: Iterable[str]) -> None:
    global _WARNED_NO_CJK_FONT
    if _WARNED_NO_CJK_FONT or _cjk_font_path() is not None:
        return
    if not any(any(ord(ch) > 127 for ch in t) for t in texts):
        return
    _WARNED_NO_CJK_FONT = True
    warnings.warn(
        "未找到可用的中文字体（FONT_LIST 全部加载失败），标注中的中文会退回 OpenCV 绘制。"
        "可安装 fonts-noto-cjk 或 fonts-wqy-zenhei，或在 src/config.py 的 FONT_LIST 中加入字体路径。",
        RuntimeWarning,
    )


def draw_texts_cn(
    img: np.ndarray,
    items: Sequence[Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]],
) -> None:
    """在 BGR 图像上原地绘制多段标注文字，只做一次 BGR/RGB 转换。

    items 中每项为 (text, (x, y) 左上角, 字号像素, BGR 颜色)。
    """
    if img is None or len(items) == 0:
        return

    _warn_once_no_cjk_font_if_needed([t for (t, _, _, _) in items])

    try:
        pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
        draw = ImageDraw.Draw(pil_img)
        for text, org, font_size, bgr in items:
            draw.text(
                (int(org[0]), int(org[1])),
                str(text),
                font=_get_best_font(int(font_size)),
                fill=(int(bgr[2]), int(bgr[1]), int(bgr[0])),
            )
        img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)
    except Exception:
        # PIL 默认位图字体无法编码中文，改用 OpenCV；putText 以基线定位，需下移一个字号
        for text, org, font_size, bgr in items:
            cv2.putText(
                img,
                str(text),
                (int(org[0]), int(org[1]) + int(font_size)),
                cv2.FONT_HERSHEY_SIMPLEX,
                max(0.3, int(font_size) / 24.0),
                (int(bgr[0]), int(bgr[1]), int(bgr[2])),
                1,
                cv2.LINE_AA,
            )


@lru_cache(maxsize=4096)
def measure_text_cn(text: str, font_size: int = 14) -> Tuple[int, int]:
    """标注文字的 (宽, 高) 像素尺寸，用于计算标签底色和文本框大小。"""
    try:
        bbox = ImageDraw.Draw(Image.new("RGB", (1, 1))).textbbox((0, 0), str(text), font=_get_best_font(int(font_size)))
        return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])
    except Exception:
        (w, h), _ = cv2.getTextSize(str(text), cv2.FONT_HERSHEY_SIMPLEX, max(0.3, float(font_size) / 24.0), 1)
        return int(w), int(h)


def _font_size_for_box(box_h: int, ratio: float, minimum: int) -> int:
    return max(minimum, int(max(12, box_h) * ratio))


def draw_labeled_box(
    img: np.ndarray,
    xyxy: Tuple[int, int, int, int],
    label: str = "",
    color: Tuple[int, int, int] = BOX_COLOR,
) -> None:
    """画人脸框，并在框的上沿贴一个带底色的标签。"""
    x1, y1, x2, y2 = [int(v) for v in xyxy]
    thickness = max(1, int(round((y2 - y1) / 100.0)) + 1)
    cv2.rectangle(img, (x1, y1), (x2, y2), color, thickness)
    if not label:
        return

    font_size = _font_size_for_box(y2 - y1, 0.12, 12)
    text_w, text_h = measure_text_cn(label, font_size)
    pad_x = max(4, int(font_size * 0.3))
    pad_y = max(2, int(font_size * 0.2))

    bg_y1 = max(0, y1 - text_h - pad_y * 2)
    cv2.rectangle(img, (x1, bg_y1), (x1 + text_w + pad_x * 2, y1), color, -1)
    draw_texts_cn(img, [(label, (x1 + pad_x, bg_y1 + pad_y), font_size, (255, 255, 255))])


def draw_text_field(
    img: np.ndarray,
    lines: Sequence[str],
    anchor: Tuple[int, int],
    font_size: int = 14,
    bg_color: Tuple[int, int, int] = TEXT_FIELD_BG,
    text_color: Tuple[int, int, int] = (255, 255, 255),
) -> None:
    """在 anchor（左上角）处画多行文本框，超出图像下边界时向上平移。"""
    lines = [str(t) for t in lines if t]
    if not lines:
        return
    sizes = [measure_text_cn(t, int(font_size)) for t in lines]
    pad = max(2, int(font_size * 0.25))
    line_h = max(h for _, h in sizes) + pad
    box_w = max(w for w, _ in sizes) + pad * 2
    box_h = line_h * len(lines) + pad

    img_h, img_w = img.shape[:2]
    x = int(min(max(0, anchor[0]), max(0, img_w - box_w)))
    y = int(min(max(0, anchor[1]), max(0, img_h - box_h)))

    cv2.rectangle(img, (x, y), (x + box_w, y + box_h), bg_color, -1)
    draw_texts_cn(
        img,
        [(t, (x + pad, y + pad + i * line_h), int(font_size), text_color) for i, t in enumerate(lines)],
    )
