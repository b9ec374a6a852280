from dataclasses import dataclass, replace
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Affine mapping between original-image and network-input coordinates.

        net = orig * scale + pad

    The same scale is used on both axes so aspect ratio is preserved; the
    scaled image is centered and the remaining border is padding.
    """

    scale: float
    pad_x: float
    pad_y: float
    orig_size: Tuple[int, int]  # (w, h)
    net_size: Tuple[int, int]  # (w, h)

    @classmethod
    def identity(cls, w: int, h: int) -> "LetterboxTransform":
        return cls(scale=1.0, pad_x=0.0, pad_y=0.0, orig_size=(int(w), int(h)), net_size=(int(w), int(h)))

    @property
    def resized_size(self) -> Tuple[int, int]:
        """Integer size of the scaled image inside the padded canvas."""
        ow, oh = self.orig_size
        return int(round(ow * self.scale)), int(round(oh * self.scale))


def compute_letterbox(orig_w: int, orig_h: int, net_w: int, net_h: int) -> LetterboxTransform:
    if orig_w <= 0 or orig_h <= 0:
        raise ValueError(f"Original size must be positive, got {orig_w}x{orig_h}")
    if net_w <= 0 or net_h <= 0:
        raise ValueError(f"Network size must be positive, got {net_w}x{net_h}")

    scale = min(net_w / orig_w, net_h / orig_h)
    pad_x = (net_w - orig_w * scale) / 2.0
    pad_y = (net_h - orig_h * scale) / 2.0
    return LetterboxTransform(
        scale=float(scale),
        pad_x=float(pad_x),
        pad_y=float(pad_y),
        orig_size=(int(orig_w), int(orig_h)),
        net_size=(int(net_w), int(net_h)),
    )


def _apply(coords: np.ndarray, t: LetterboxTransform, forward: bool) -> np.ndarray:
    c = np.array(coords, dtype=np.float64, copy=True)
    if c.shape[-1] not in (2, 4):
        raise ValueError(f"Expected (..., 2) points or (..., 4) xyxy boxes, got shape {c.shape}")

    xs = c[..., 0::2]
    ys = c[..., 1::2]
    if forward:
        c[..., 0::2] = xs * t.scale + t.pad_x
        c[..., 1::2] = ys * t.scale + t.pad_y
    else:
        c[..., 0::2] = (xs - t.pad_x) / t.scale
        c[..., 1::2] = (ys - t.pad_y) / t.scale
    return c


def to_network_space(t: LetterboxTransform, coords) -> np.ndarray:
    """Map original-image points/boxes into network-input space."""
    return _apply(coords, t, forward=True)


def to_original_space(t: LetterboxTransform, coords) -> np.ndarray:
    """Map network-input points/boxes back into original-image space."""
    return _apply(coords, t, forward=False)


def letterbox(
    image: np.ndarray,
    new_shape: Tuple[int, int] = (416, 416),
    color: Tuple[int, int, int] = (127, 127, 127),
):
    """
    Resize and center-pad an image into `new_shape` (w, h), keeping aspect ratio.

    Returns:
        padded: resized + padded image, exactly new_shape
        transform: the LetterboxTransform used for the placement
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    h, w = image.shape[:2]
    channels = image.shape[2] if image.ndim == 3 else 1
    keep_channel_axis = image.ndim == 3
    if isinstance(new_shape, int):
        new_shape = (new_shape, new_shape)
    new_w, new_h = new_shape

    t = compute_letterbox(w, h, new_w, new_h)
    resized_w, resized_h = t.resized_size
    resized_w, resized_h = min(resized_w, new_w), min(resized_h, new_h)

    if (w, h) != (resized_w, resized_h):
        image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    dw, dh = new_w - resized_w, new_h - resized_h
    left, top = dw // 2, dh // 2
    right, bottom = dw - left, dh - top
    value = tuple(color[:channels]) if channels > 1 else color[0]
    padded = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=value)
    if padded.ndim == 2 and keep_channel_axis:
        padded = padded[:, :, None]

    # the pixels sit at integer offsets, not at the fractional centered pad
    return padded, replace(t, pad_x=float(left), pad_y=float(top))
