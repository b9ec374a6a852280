from __future__ import annotations

import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Tuple

import numpy as np

from .decode import BoxDecoder, FlatScoring, HierarchicalScoring, RawDetectionTensor
from .errors import DimensionError, StateError
from .letterbox import LetterboxTransform, letterbox, to_original_space
from .lifecycle import LifecycleState, ModelLifecycle
from .model import ModelConfig, ModelHandle, load_model
from .nms import Suppressor
from .types import Detection, DetectionMessage
from .visualize import draw_detections

logger = logging.getLogger(__name__)


class SerialEmitter(Protocol):
    def emit(self, message: DetectionMessage) -> None:
        ...


class PipelineStage(enum.Enum):
    UNINITIALIZED = "uninitialized"
    PREDICTED = "predicted"
    BOXES_READY = "boxes_ready"


@dataclass(frozen=True)
class PipelineConfig:
    """
    Post-processing options, as fractions in [0, 1].

    - thresh: minimum confidence for a detection
    - hier_thresh: running-probability cutoff when walking a label tree
    - nms: IoU above which a same-class box is suppressed
    - auto_resize: resize the network to each image's size (rounded up to
      `stride`) instead of letterboxing into the current input dims; networks
      with a fixed input size are always letterboxed
    """

    thresh: float = 0.24
    hier_thresh: float = 0.5
    nms: float = 0.45
    auto_resize: bool = True
    stride: int = 32
    pad_color: Tuple[int, int, int] = (127, 127, 127)

    def __post_init__(self) -> None:
        for key in ("thresh", "hier_thresh", "nms"):
            value = getattr(self, key)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{key} must be in [0, 1], got {value}")
        if self.stride < 1:
            raise ValueError(f"stride must be >= 1, got {self.stride}")

    @classmethod
    def from_model_config(cls, cfg: ModelConfig, **kwargs: Any) -> "PipelineConfig":
        return cls(thresh=cfg.thresh / 100.0, hier_thresh=cfg.hierthresh / 100.0, nms=cfg.nms / 100.0, **kwargs)


class DetectionPipeline:
    """
    Letterbox -> forward pass -> decode -> per-class NMS -> original coordinates.

    The model loads in the background (start()); until it is ready every
    model-dependent call raises NotReadyError immediately, so a real-time caller
    can drop the frame and try again on the next one.

    Call order per frame: predict() -> compute_boxes() -> draw_detections() /
    send_serial(). Not re-entrant: use one instance per processing thread.
    """

    def __init__(
        self,
        model_cfg: ModelConfig = ModelConfig(),
        cfg: Optional[PipelineConfig] = None,
        *,
        loader: Callable[[ModelConfig], ModelHandle] = load_model,
    ):
        self.model_cfg = model_cfg
        self.cfg = cfg if cfg is not None else PipelineConfig.from_model_config(model_cfg)
        self._loader = loader
        self.lifecycle: ModelLifecycle[ModelHandle] = ModelLifecycle(name="detector")
        self._reset()

    def _reset(self) -> None:
        self._stage = PipelineStage.UNINITIALIZED
        self._raw: Optional[RawDetectionTensor] = None
        self._transform: Optional[LetterboxTransform] = None
        self._boxes_size: Optional[Tuple[int, int]] = None
        self._detections: List[Detection] = []

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        """Begin loading the model in the background; returns immediately."""
        self.lifecycle.begin_load(self._loader, self.model_cfg)

    def is_ready(self) -> bool:
        return self.lifecycle.is_ready()

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    @property
    def stage(self) -> PipelineStage:
        return self._stage

    def close(self) -> None:
        self._reset()
        self.lifecycle.close()

    def __enter__(self) -> "DetectionPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Model dims
    # ------------------------------------------------------------------ #
    def get_in_dims(self) -> Tuple[int, int, int]:
        return self.lifecycle.require_ready().in_dims

    def resize_in_dims(self, w: int, h: int) -> None:
        """
        Change the network input size (fully convolutional networks only).

        Channel count is fixed. Any transform, raw output or boxes computed for
        the previous size are discarded.
        """
        handle = self.lifecycle.require_ready()
        if w <= 0 or h <= 0:
            raise ValueError(f"Input dims must be positive, got {w}x{h}")
        if (w, h) == handle.in_dims[:2]:
            return
        logger.debug("Resizing network input %s -> %dx%d", handle.in_dims[:2], w, h)
        handle.resize_input(int(w), int(h))
        self._reset()

    def class_name(self, class_id: Optional[int]) -> str:
        return self.lifecycle.require_ready().label(class_id)

    # ------------------------------------------------------------------ #
    # Inference
    # ------------------------------------------------------------------ #
    def _stride_ceil(self, v: int) -> int:
        s = self.cfg.stride
        return int(math.ceil(v / s) * s)

    def predict(self, image: np.ndarray) -> float:
        """
        Run the network on an RGB byte image (H, W, C) or grayscale (H, W).

        Returns the forward-pass time in milliseconds. The raw output and the
        letterbox transform are kept for compute_boxes().
        """
        handle = self.lifecycle.require_ready()
        if image is None or not hasattr(image, "shape"):
            raise TypeError("image must be a NumPy array.")
        if image.ndim not in (2, 3):
            raise ValueError(f"Expected image shape (H, W) or (H, W, C), got {image.shape}")

        channels = 1 if image.ndim == 2 else image.shape[2]
        net_w, net_h, net_c = handle.in_dims
        if channels != net_c:
            raise DimensionError(f"Image has {channels} channels but the network expects {net_c}")

        orig_h, orig_w = image.shape[:2]
        if self.cfg.auto_resize and handle.resizable:
            want = (self._stride_ceil(orig_w), self._stride_ceil(orig_h))
            if want != (net_w, net_h):
                self.resize_in_dims(*want)
                net_w, net_h = want

        if image.ndim == 2:
            image = image[:, :, None]
        padded, transform = letterbox(image, new_shape=(net_w, net_h), color=self.cfg.pad_color)

        # HWC bytes -> normalized planar, add batch
        blob = padded.astype(np.float32) / 255.0
        blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])

        return self._run(handle, blob, transform)

    def predict_tensor(self, blob: np.ndarray) -> float:
        """
        Run the network on an already normalized planar float input, (C, H, W)
        or (1, C, H, W). A spatial size different from the network's triggers
        resize_in_dims(); no letterboxing is done.
        """
        handle = self.lifecycle.require_ready()
        x = np.asarray(blob, dtype=np.float32)
        if x.ndim == 3:
            x = x[None, ...]
        if x.ndim != 4 or x.shape[0] != 1:
            raise ValueError(f"Expected (C, H, W) or (1, C, H, W) input, got {np.shape(blob)}")

        _, c, h, w = x.shape
        net_w, net_h, net_c = handle.in_dims
        if c != net_c:
            raise DimensionError(f"Input has {c} channels but the network expects {net_c}")
        if (w, h) != (net_w, net_h):
            self.resize_in_dims(w, h)

        return self._run(handle, np.ascontiguousarray(x), LetterboxTransform.identity(w, h))

    def _run(self, handle: ModelHandle, blob: np.ndarray, transform: LetterboxTransform) -> float:
        # a failed forward pass must not leave the previous frame's boxes usable
        self._reset()

        t0 = time.perf_counter()
        raw = handle.forward(blob)
        elapsed_ms = (time.perf_counter() - t0) * 1000.0

        self._raw = raw
        self._transform = transform
        self._stage = PipelineStage.PREDICTED
        return elapsed_ms

    # ------------------------------------------------------------------ #
    # Post-processing
    # ------------------------------------------------------------------ #
    def _decoder(self, handle: ModelHandle) -> BoxDecoder:
        if handle.tree is not None:
            scoring = HierarchicalScoring(handle.tree, self.cfg.hier_thresh)
        else:
            scoring = FlatScoring()
        return BoxDecoder(handle.layers, handle.num_classes, scoring)

    def compute_boxes(self, orig_w: int, orig_h: int) -> List[Detection]:
        """
        Decode and suppress the last prediction, mapping boxes into an
        orig_w x orig_h image. Replaces `detections`.
        """
        handle = self.lifecycle.require_ready()
        if self._stage is PipelineStage.UNINITIALIZED or self._raw is None or self._transform is None:
            raise StateError("compute_boxes() requires a prior predict()")
        if orig_w <= 0 or orig_h <= 0:
            raise ValueError(f"Image size must be positive, got {orig_w}x{orig_h}")

        t = self._transform
        candidates = self._decoder(handle).decode(self._raw, t.net_size, self.cfg.thresh)
        kept = Suppressor(self.cfg.nms).suppress(candidates)

        # predicted image may differ in size from the one boxes are wanted for
        sx = orig_w / t.orig_size[0]
        sy = orig_h / t.orig_size[1]
        detections: List[Detection] = []
        for det in kept:
            x1, y1, x2, y2 = to_original_space(t, det.as_xyxy())
            detections.append(
                Detection(
                    x1=float(np.clip(x1 * sx, 0, orig_w - 1)),
                    y1=float(np.clip(y1 * sy, 0, orig_h - 1)),
                    x2=float(np.clip(x2 * sx, 0, orig_w - 1)),
                    y2=float(np.clip(y2 * sy, 0, orig_h - 1)),
                    score=det.score,
                    class_id=det.class_id,
                )
            )

        self._detections = detections
        self._boxes_size = (int(orig_w), int(orig_h))
        self._stage = PipelineStage.BOXES_READY
        return list(detections)

    @property
    def detections(self) -> List[Detection]:
        return list(self._detections)

    def _scaled_detections(self, op: str, orig_w: int, orig_h: int) -> List[Detection]:
        if self._stage is not PipelineStage.BOXES_READY or self._boxes_size is None:
            raise StateError(f"{op}() requires a prior compute_boxes()")
        bw, bh = self._boxes_size
        if (orig_w, orig_h) == (bw, bh):
            return list(self._detections)
        sx, sy = orig_w / bw, orig_h / bh
        return [
            Detection(x1=d.x1 * sx, y1=d.y1 * sy, x2=d.x2 * sx, y2=d.y2 * sy, score=d.score, class_id=d.class_id)
            for d in self._detections
        ]

    def draw_detections(self, target: np.ndarray, orig_w: int, orig_h: int, x_off: int = 0, y_off: int = 0) -> None:
        """
        Draw every detection into the orig_w x orig_h region of `target` whose
        top-left corner is (x_off, y_off). Mutates `target` only.
        """
        handle = self.lifecycle.require_ready()
        dets = self._scaled_detections("draw_detections", orig_w, orig_h)
        draw_detections(target, dets, label_fn=handle.label, offset=(x_off, y_off), region=(orig_w, orig_h))

    def send_serial(self, emitter: SerialEmitter, orig_w: int, orig_h: int) -> None:
        """Emit one DetectionMessage per detection, in orig_w x orig_h coordinates."""
        handle = self.lifecycle.require_ready()
        for det in self._scaled_detections("send_serial", orig_w, orig_h):
            x, y, w, h = det.as_xywh()
            emitter.emit(
                DetectionMessage(label=handle.label(det.class_id), confidence=det.score, x=x, y=y, w=w, h=h)
            )
