from __future__ import annotations

from typing import Callable, Iterable, Optional, Tuple

import numpy as np

from .types import Detection


def _color_for_class_id(class_id: Optional[int]) -> Tuple[int, int, int]:
    """
    Deterministic color for a class id.
    """

    if class_id is None:
        return (0, 255, 255)

    # Small deterministic palette, then fallback to a seeded RNG for larger IDs.
    palette = [
        (255, 56, 56),
        (255, 157, 151),
        (255, 112, 31),
        (255, 178, 29),
        (207, 210, 49),
        (72, 249, 10),
        (146, 204, 23),
        (61, 219, 134),
        (26, 147, 52),
        (0, 212, 187),
        (44, 153, 168),
        (0, 194, 255),
        (52, 69, 147),
        (100, 115, 255),
        (0, 24, 236),
        (132, 56, 255),
        (82, 0, 133),
        (203, 56, 255),
        (255, 149, 200),
        (255, 55, 199),
    ]
    if 0 <= class_id < len(palette):
        return palette[class_id]

    rng = np.random.default_rng(int(class_id))
    rgb = rng.integers(0, 256, size=3, dtype=np.uint8)
    return int(rgb[0]), int(rgb[1]), int(rgb[2])


def format_label(name: str, score: float) -> str:
    return f"{name}: {int(round(score * 100.0))}%"


def draw_detections(
    target: np.ndarray,
    detections: Iterable[Detection],
    *,
    label_fn: Optional[Callable[[Optional[int]], str]] = None,
    offset: Tuple[int, int] = (0, 0),
    region: Optional[Tuple[int, int]] = None,
    show_score: bool = True,
    box_thickness: int = 2,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw bounding boxes + labels onto `target` in place and return it.

    Args:
        target: image (H, W, 3) to draw on; must already be large enough.
        detections: iterable of Detection in image coordinates of the region.
        label_fn: maps a class id to a display name (defaults to the id).
        offset: (x, y) of the region's top-left corner inside `target`, e.g. the
            right half of a side-by-side canvas.
        region: (w, h) of the region; drawing is clipped to it. Defaults to the
            rest of the target past `offset`.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if target is None or not hasattr(target, "shape"):
        raise TypeError("target must be a NumPy array.")
    if target.ndim != 3 or target.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(target, 'shape', None)}")

    th_img, tw_img = target.shape[:2]
    xoff, yoff = int(offset[0]), int(offset[1])
    if region is None:
        region = (tw_img - xoff, th_img - yoff)
    rw, rh = int(region[0]), int(region[1])
    if xoff < 0 or yoff < 0 or rw <= 0 or rh <= 0 or xoff + rw > tw_img or yoff + rh > th_img:
        raise ValueError(f"Region {rw}x{rh} at ({xoff}, {yoff}) does not fit in a {tw_img}x{th_img} target")

    # drawing happens in a view so nothing leaks outside the region
    out = target[yoff : yoff + rh, xoff : xoff + rw]
    h, w = rh, rw

    for det in detections:
        x1, y1, x2, y2 = det.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))

        color = _color_for_class_id(det.class_id)
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        if label_fn is not None:
            name = label_fn(det.class_id)
        else:
            name = "object" if det.class_id is None else str(det.class_id)
        label = format_label(name, det.score) if show_score else name

        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        # Place label above the box if possible, else inside.
        y_text_top = y1i - th - baseline
        if y_text_top < 0:
            y_text_top = y1i

        x_text_right = min(x1i + tw, w - 1)
        y_text_bottom = min(y_text_top + th + baseline, h - 1)

        cv2.rectangle(out, (x1i, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
        cv2.putText(
            out,
            label,
            (x1i, min(y_text_top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (255, 255, 255),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return target
