"""
Decode raw YOLO-family layer outputs into thresholded candidate boxes.

Supported per-layer encodings (chosen by `LayerSpec.kind`, never by inspecting
the tensor):

- "yolo":   YOLOv3-style head, (A*(5+C), H, W). Anchors are in network pixels.
- "region": YOLOv2-style head, same layout. Anchors are in grid cells.
- "flat":   already decoded rows (N, 5+C): [cx, cy, w, h, obj, class_scores...]
            in network pixels.

Each entry carries [tx, ty, tw, th, objectness, class_scores...].
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .types import Candidates

RawDetectionTensor = Sequence[np.ndarray]

LAYER_KINDS = ("yolo", "region", "flat")


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def _softmax(x: np.ndarray, axis: int = -1) -> np.ndarray:
    e = np.exp(x - np.max(x, axis=axis, keepdims=True))
    return e / np.sum(e, axis=axis, keepdims=True)


@dataclass(frozen=True)
class LayerSpec:
    """
    Architecture metadata for one detection head.

    - kind: "yolo", "region" or "flat"
    - anchors: (w, h) priors for this head, in the unit `kind` dictates
    - activated: True when the forward pass already applied the logistic to
      x/y/objectness/class scores (Darknet does this inside its layers)
    """

    kind: str = "yolo"
    anchors: Tuple[Tuple[float, float], ...] = ()
    activated: bool = True

    def __post_init__(self) -> None:
        if self.kind not in LAYER_KINDS:
            raise ValueError(f"Unsupported layer kind {self.kind!r}; expected one of {LAYER_KINDS}")
        if self.kind != "flat" and not self.anchors:
            raise ValueError(f"Layer kind {self.kind!r} requires at least one anchor")

    @property
    def num_anchors(self) -> int:
        return len(self.anchors)


@dataclass(frozen=True)
class LabelTree:
    """
    Tree-structured label set (Darknet .tree / WordTree).

    `parent[i]` is the parent node of class i, or -1 for top-level labels.
    Siblings form a group whose conditional probabilities sum to one.
    """

    parent: Tuple[int, ...]
    names: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        n = len(self.parent)
        if n == 0:
            raise ValueError("Label tree must have at least one node")
        for i, p in enumerate(self.parent):
            if p < -1 or p >= n or p == i:
                raise ValueError(f"Invalid parent {p} for tree node {i}")

    def __len__(self) -> int:
        return len(self.parent)

    @cached_property
    def _children(self) -> Dict[int, Tuple[int, ...]]:
        out: Dict[int, List[int]] = {}
        for node, p in enumerate(self.parent):
            out.setdefault(p, []).append(node)
        return {k: tuple(v) for k, v in out.items()}

    def children(self, node: int) -> Tuple[int, ...]:
        """Child nodes of `node` (-1 gives the top-level group)."""
        return self._children.get(node, ())

    @cached_property
    def groups(self) -> Tuple[Tuple[int, ...], ...]:
        return tuple(self._children[p] for p in sorted(self._children))


class FlatScoring:
    """Confidence = objectness * max class probability."""

    kind = "flat"

    def normalize(self, logits: np.ndarray, layer_kind: str) -> np.ndarray:
        if layer_kind == "region":
            return _softmax(logits, axis=1)
        return _sigmoid(logits)

    def score(self, objectness: np.ndarray, class_probs: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        if class_probs.shape[0] == 0:
            return np.zeros((0,), dtype=np.int64), np.zeros((0,), dtype=np.float32)
        class_ids = np.argmax(class_probs, axis=1)
        class_conf = class_probs[np.arange(class_probs.shape[0]), class_ids]
        return class_ids.astype(np.int64), objectness * class_conf


class HierarchicalScoring:
    """
    Coarse-to-fine scoring over a label tree.

    Class scores are conditional probabilities P(node | parent). Starting at the
    top-level group, follow the most likely child while the running product of
    conditional probabilities stays above `hier_thresh`; the deepest node reached
    is reported. When even the best top-level label is below the threshold, that
    label is reported anyway.
    """

    kind = "hierarchical"

    def __init__(self, tree: LabelTree, hier_thresh: float = 0.5):
        if not 0.0 <= hier_thresh <= 1.0:
            raise ValueError(f"hier_thresh must be in [0, 1], got {hier_thresh}")
        self.tree = tree
        self.hier_thresh = float(hier_thresh)

    def normalize(self, logits: np.ndarray, layer_kind: str) -> np.ndarray:
        probs = np.empty_like(logits)
        for group in self.tree.groups:
            idx = np.array(group)
            probs[:, idx] = _softmax(logits[:, idx], axis=1)
        return probs

    def _walk(self, probs: np.ndarray) -> Tuple[int, float]:
        group = self.tree.children(-1)
        p = 1.0
        best: Optional[int] = None
        while group:
            vals = probs[list(group)]
            k = int(np.argmax(vals))
            if p * float(vals[k]) > self.hier_thresh:
                p *= float(vals[k])
                best = group[k]
                group = self.tree.children(best)
                continue
            if best is None:
                return group[k], float(vals[k])
            break
        return int(best), p

    def score(self, objectness: np.ndarray, class_probs: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        if class_probs.shape[1] != len(self.tree):
            raise ValueError(
                f"Label tree has {len(self.tree)} nodes but the tensor carries {class_probs.shape[1]} classes"
            )
        class_ids = np.zeros((class_probs.shape[0],), dtype=np.int64)
        conf = np.zeros((class_probs.shape[0],), dtype=np.float64)
        for i, row in enumerate(class_probs):
            node, p = self._walk(row)
            class_ids[i] = node
            conf[i] = objectness[i] * p
        return class_ids, conf


class BoxDecoder:
    """
    One pass over every cell/anchor of every head: score, threshold, decode box.

    Output order is head, then row, then column, then anchor.
    """

    def __init__(self, layers: Sequence[LayerSpec], num_classes: int, scoring=None):
        if not layers:
            raise ValueError("At least one LayerSpec is required")
        if num_classes < 1:
            raise ValueError(f"num_classes must be >= 1, got {num_classes}")
        self.layers = tuple(layers)
        self.num_classes = int(num_classes)
        self.scoring = scoring if scoring is not None else FlatScoring()

    def decode(self, raw: RawDetectionTensor, net_size: Tuple[int, int], thresh: float) -> Candidates:
        if len(raw) != len(self.layers):
            raise ValueError(f"Expected {len(self.layers)} output tensors, got {len(raw)}")

        parts = [self._decode_layer(np.asarray(p), spec, net_size, thresh) for p, spec in zip(raw, self.layers)]
        parts = [c for c in parts if len(c)]
        if not parts:
            return Candidates.empty()
        return Candidates(
            boxes=np.concatenate([c.boxes for c in parts], axis=0),
            scores=np.concatenate([c.scores for c in parts], axis=0),
            class_ids=np.concatenate([c.class_ids for c in parts], axis=0),
        )

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _entries(
        self, p: np.ndarray, spec: LayerSpec
    ) -> Tuple[np.ndarray, Optional[np.ndarray], Tuple[int, int]]:
        """
        Flatten one head to (N, 5+C) rows, plus (N, 3) [row, col, anchor] and the
        (grid_h, grid_w) extent for anchor heads.
        """
        n_attr = 5 + self.num_classes

        if spec.kind == "flat":
            while p.ndim > 2 and p.shape[0] == 1:
                p = p[0]
            if p.ndim != 2 or p.shape[1] != n_attr:
                raise ValueError(f"Expected flat layer shape (N, {n_attr}), got {p.shape}")
            return p, None, (1, 1)

        a = spec.num_anchors
        while p.ndim > 4 and p.shape[0] == 1:
            p = p[0]
        if p.ndim == 4 and p.shape[:2] != (a, n_attr) and p.shape[0] == 1:
            p = p[0]
        if p.ndim == 3:
            if p.shape[0] != a * n_attr:
                raise ValueError(f"Expected {a}*{n_attr} channels for layer, got shape {p.shape}")
            p = p.reshape(a, n_attr, p.shape[1], p.shape[2])
        if p.ndim != 4 or p.shape[:2] != (a, n_attr):
            raise ValueError(f"Unsupported layer output shape: {p.shape}")

        _, _, gh, gw = p.shape
        rows = np.transpose(p, (2, 3, 0, 1)).reshape(-1, n_attr)
        grid = np.stack(
            [g.reshape(-1) for g in np.meshgrid(np.arange(gh), np.arange(gw), np.arange(a), indexing="ij")],
            axis=1,
        )
        return rows, grid, (gh, gw)

    def _decode_layer(
        self, p: np.ndarray, spec: LayerSpec, net_size: Tuple[int, int], thresh: float
    ) -> Candidates:
        rows, grid, grid_dims = self._entries(p, spec)
        rows = rows.astype(np.float64, copy=False)

        objectness = rows[:, 4] if spec.activated else _sigmoid(rows[:, 4])
        keep = objectness > thresh
        if not np.any(keep):
            return Candidates.empty()
        rows, objectness = rows[keep], objectness[keep]
        if grid is not None:
            grid = grid[keep]

        class_scores = rows[:, 5:]
        if not spec.activated:
            class_scores = self.scoring.normalize(class_scores, spec.kind)
        class_ids, conf = self.scoring.score(objectness, class_scores)

        boxes = self._decode_boxes(rows[:, :4], grid, grid_dims, spec, net_size)
        keep = (conf > thresh) & np.all(np.isfinite(boxes), axis=1)
        return Candidates(
            boxes=boxes[keep].astype(np.float32),
            scores=conf[keep].astype(np.float32),
            class_ids=class_ids[keep],
        )

    def _decode_boxes(
        self,
        t: np.ndarray,
        grid: Optional[np.ndarray],
        grid_dims: Tuple[int, int],
        spec: LayerSpec,
        net_size: Tuple[int, int],
    ) -> np.ndarray:
        net_w, net_h = net_size
        if spec.kind == "flat":
            cx, cy, bw, bh = t.T
        else:
            gh, gw = grid_dims
            tx, ty = (t[:, 0], t[:, 1]) if spec.activated else (_sigmoid(t[:, 0]), _sigmoid(t[:, 1]))
            anchors = np.asarray(spec.anchors, dtype=np.float64)[grid[:, 2]]
            cx = (grid[:, 1] + tx) / gw * net_w
            cy = (grid[:, 0] + ty) / gh * net_h
            with np.errstate(over="ignore"):
                bw = np.exp(t[:, 2]) * anchors[:, 0]
                bh = np.exp(t[:, 3]) * anchors[:, 1]
            if spec.kind == "region":
                bw = bw / gw * net_w
                bh = bh / gh * net_h

        return np.stack([cx - bw / 2, cy - bh / 2, cx + bw / 2, cy + bh / 2], axis=1)
