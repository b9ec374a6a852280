"""
Readers for the Darknet text formats that describe a network.

Only the metadata the post-processing needs is extracted: input dims, the
detection heads with their anchors, class count and optional label tree. The
`.cfg` format repeats section names, so it is parsed by hand.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .decode import LayerSpec

PathLike = Union[str, Path]

_HEAD_SECTIONS = ("yolo", "region")


@dataclass(frozen=True)
class NetworkConfig:
    width: int
    height: int
    channels: int
    classes: int
    layers: Tuple[LayerSpec, ...]
    tree: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)


def read_data_config(path: PathLike) -> Dict[str, str]:
    """Read a Darknet `.data` file (`key = value` per line)."""

    out: Dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.split("#", 1)[0].strip()
            if not line or "=" not in line:
                continue
            key, value = line.split("=", 1)
            out[key.strip()] = value.strip()
    return out


def _read_sections(path: PathLike) -> List[Tuple[str, Dict[str, str]]]:
    sections: List[Tuple[str, Dict[str, str]]] = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line[0] in "#;":
                continue
            if line.startswith("["):
                if not line.endswith("]"):
                    raise ValueError(f"{path}:{lineno}: malformed section header {line!r}")
                sections.append((line[1:-1].strip().lower(), {}))
                continue
            if "=" not in line:
                raise ValueError(f"{path}:{lineno}: expected 'key=value', got {line!r}")
            if not sections:
                raise ValueError(f"{path}:{lineno}: option outside of any section")
            key, value = line.split("=", 1)
            sections[-1][1][key.strip()] = value.strip()
    return sections


def _floats(value: str) -> List[float]:
    return [float(v) for v in value.replace(" ", "").split(",") if v]


def _head_spec(kind: str, opts: Dict[str, str], activated: bool = False) -> LayerSpec:
    flat = _floats(opts.get("anchors", ""))
    if len(flat) % 2:
        raise ValueError(f"[{kind}] anchors must come in (w, h) pairs, got {len(flat)} values")
    pairs = [(flat[i], flat[i + 1]) for i in range(0, len(flat), 2)]

    if kind == "yolo" and "mask" in opts:
        mask = [int(v) for v in _floats(opts["mask"])]
        pairs = [pairs[m] for m in mask]
    elif "num" in opts:
        pairs = pairs[: int(opts["num"])]

    return LayerSpec(kind=kind, anchors=tuple(pairs), activated=activated)


def read_network_config(path: PathLike, activated: bool = False) -> NetworkConfig:
    """
    Read input dims and detection heads from a Darknet `.cfg`.

    `activated` says whether the exported forward pass already applies the
    logistic inside the heads. Darknet does; ONNX exports of `[yolo]` and
    `[region]` layers usually stop at the raw convolution output.
    """
    sections = _read_sections(path)
    if not sections or sections[0][0] not in ("net", "network"):
        raise ValueError(f"{path}: first section must be [net]")

    net = sections[0][1]
    heads = [(name, opts) for name, opts in sections[1:] if name in _HEAD_SECTIONS]
    if not heads:
        raise ValueError(f"{path}: no [yolo] or [region] detection layer found")

    classes = {int(opts.get("classes", 20)) for _, opts in heads}
    if len(classes) != 1:
        raise ValueError(f"{path}: detection layers disagree on class count: {sorted(classes)}")

    tree = next((opts["tree"] for _, opts in heads if "tree" in opts), None)

    return NetworkConfig(
        width=int(net.get("width", 416)),
        height=int(net.get("height", 416)),
        channels=int(net.get("channels", 3)),
        classes=classes.pop(),
        layers=tuple(_head_spec(name, opts, activated) for name, opts in heads),
        tree=tree,
        options=dict(net),
    )
