from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .types import Candidates, Detection


@dataclass
class NMSConfig:
    iou_threshold: float = 0.45
    max_detections: Optional[int] = None


def iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    Intersection-over-union of one xyxy box against (N,4) xyxy boxes.
    """
    box = np.asarray(box, dtype=np.float64)
    boxes = np.asarray(boxes, dtype=np.float64)
    xx1 = np.maximum(box[0], boxes[:, 0])
    yy1 = np.maximum(box[1], boxes[:, 1])
    xx2 = np.minimum(box[2], boxes[:, 2])
    yy2 = np.minimum(box[3], boxes[:, 3])

    w = np.maximum(0.0, xx2 - xx1)
    h = np.maximum(0.0, yy2 - yy1)
    inter = w * h
    area = max(0.0, float(box[2] - box[0])) * max(0.0, float(box[3] - box[1]))
    areas = np.maximum(0.0, boxes[:, 2] - boxes[:, 0]) * np.maximum(0.0, boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter
    return inter / np.maximum(union, 1e-6)


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).

    Boxes are visited by descending score; equal scores keep their input order.
    A box is suppressed when its IoU with an already kept box is strictly
    greater than `cfg.iou_threshold`. Returns kept indices in visiting order.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    order = np.argsort(-np.asarray(scores, dtype=np.float64), kind="stable")
    keep = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = order[0]
        keep.append(i)

        overlap = iou(boxes[i], boxes[order[1:]])
        inds = np.where(overlap <= cfg.iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int64)


class Suppressor:
    """
    Per-class non-maximum suppression over decoded candidates.

    Classes are processed independently in ascending class-index order; the
    output concatenates each class's survivors in descending confidence.
    """

    def __init__(self, iou_threshold: float = 0.45, max_detections: Optional[int] = None):
        if not 0.0 <= iou_threshold <= 1.0:
            raise ValueError(f"iou_threshold must be in [0, 1], got {iou_threshold}")
        self.cfg = NMSConfig(iou_threshold=float(iou_threshold), max_detections=max_detections)

    def suppress(self, candidates: Candidates) -> List[Detection]:
        if len(candidates) == 0:
            return []

        out: List[Detection] = []
        for cls in np.unique(candidates.class_ids):
            idx = np.flatnonzero(candidates.class_ids == cls)
            kept = idx[nms(candidates.boxes[idx], candidates.scores[idx], self.cfg)]
            for k in kept:
                x1, y1, x2, y2 = candidates.boxes[k]
                out.append(
                    Detection(
                        x1=float(x1),
                        y1=float(y1),
                        x2=float(x2),
                        y2=float(y2),
                        score=float(candidates.scores[k]),
                        class_id=int(cls),
                    )
                )
        return out
