from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np


@dataclass
class Detection:
    """
    Generic detection representation used across the pipeline.

    Coordinates are xyxy in whatever space the producer documents (network
    space out of the suppressor, original-image space out of the pipeline).
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: Optional[int] = None

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2 - self.x1, self.y2 - self.y1

    def center(self) -> Tuple[float, float]:
        return (self.x1 + self.x2) / 2.0, (self.y1 + self.y2) / 2.0


@dataclass(frozen=True)
class Candidates:
    """
    Decoded, thresholded boxes prior to suppression, in decode order.

    boxes: (N, 4) xyxy in network-input pixels
    scores: (N,) confidence in [0, 1]
    class_ids: (N,) integer class index
    """

    boxes: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray

    @classmethod
    def empty(cls) -> "Candidates":
        return cls(
            boxes=np.zeros((0, 4), dtype=np.float32),
            scores=np.zeros((0,), dtype=np.float32),
            class_ids=np.zeros((0,), dtype=np.int64),
        )

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def __iter__(self) -> Iterator[Tuple[int, float, Tuple[float, float, float, float]]]:
        for box, score, cls_id in zip(self.boxes, self.scores, self.class_ids):
            yield int(cls_id), float(score), tuple(float(v) for v in box)


@dataclass(frozen=True)
class DetectionMessage:
    """
    One per-detection event handed to a serial emitter.

    Geometry is in original-image pixels: (x, y) top-left corner plus size.
    """

    label: str
    confidence: float
    x: float
    y: float
    w: float
    h: float

    def format(self) -> str:
        return (
            f"{self.label} {self.confidence * 100.0:.1f} "
            f"{int(round(self.x))} {int(round(self.y))} {int(round(self.w))} {int(round(self.h))}"
        )
