from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .darknet_cfg import read_data_config, read_network_config
from .decode import LabelTree, LayerSpec
from .metadata import load_class_names, load_label_tree

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery, used when no data root is configured.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root`, or the project root when
      `root` is "auto", None or empty.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root in ("auto", None, ""):
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


# ---------------------------------------------------------------------- #
# Configuration
# ---------------------------------------------------------------------- #
@dataclass(frozen=True)
class ModelConfig:
    """
    Recognized model options. Thresholds are percentages, as users set them.

    Relative paths resolve against `dataroot` (the project root if empty).
    An empty `namefile` takes the `names=` entry of the data config.
    `activated` is True only when the exported network already applies the
    logistic in its detection heads; raw exports leave it False.
    """

    dataroot: str = ""
    datacfg: str = "cfg/coco.data"
    cfgfile: str = "cfg/yolov3-tiny.cfg"
    weightfile: str = "weights/yolov3-tiny.onnx"
    namefile: str = ""
    nms: float = 45.0
    thresh: float = 24.0
    hierthresh: float = 50.0
    threads: int = 6
    activated: bool = False

    def __post_init__(self) -> None:
        for key in ("nms", "thresh", "hierthresh"):
            value = getattr(self, key)
            if not 0.0 <= value <= 100.0:
                raise ValueError(f"{key} must be in [0, 100], got {value}")
        if not 1 <= self.threads <= 1024:
            raise ValueError(f"threads must be in [1, 1024], got {self.threads}")

    def resolve(self, path: str) -> Path:
        return resolve_path(path, root=self.dataroot or "auto")


_STR_KEYS = ("dataroot", "datacfg", "cfgfile", "weightfile", "namefile")
_PERCENT_KEYS = ("nms", "thresh", "hierthresh")


def load_model_config(path: Path, **overrides: Any) -> ModelConfig:
    """
    Read a ModelConfig from a JSON object. Keyword overrides win over the file.
    """
    if not path.exists():
        raise FileNotFoundError(f"Model config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid model config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Model config must be a JSON object")

    allowed = set(_STR_KEYS) | set(_PERCENT_KEYS) | {"threads", "activated"}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown model config keys: {unknown}")

    for key in _STR_KEYS:
        if key in payload and not isinstance(payload[key], str):
            raise ValueError(f"{key} must be a string")
    for key in _PERCENT_KEYS:
        value = payload.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise ValueError(f"{key} must be a number")
    threads = payload.get("threads")
    if threads is not None and (isinstance(threads, bool) or not isinstance(threads, int)):
        raise ValueError("threads must be an integer")
    if "activated" in payload and not isinstance(payload["activated"], bool):
        raise ValueError("activated must be a boolean")

    payload.update({k: v for k, v in overrides.items() if v is not None})
    return ModelConfig(**payload)


# ---------------------------------------------------------------------- #
# Model handle
# ---------------------------------------------------------------------- #
class Network(Protocol):
    """Forward-pass collaborator wrapped by a ModelHandle."""

    @property
    def in_dims(self) -> Tuple[int, int, int]:
        ...

    def resize(self, w: int, h: int) -> None:
        ...

    def forward(self, blob: np.ndarray) -> Sequence[np.ndarray]:
        ...


@dataclass(frozen=True)
class ModelHandle:
    """
    Loaded network plus the metadata needed to interpret its output.

    Read-only once published by ModelLifecycle, except for the input size,
    which only DetectionPipeline.resize_in_dims() changes.
    """

    network: Network
    num_classes: int
    names: Tuple[str, ...] = ()
    layers: Tuple[LayerSpec, ...] = ()
    tree: Optional[LabelTree] = None

    @property
    def in_dims(self) -> Tuple[int, int, int]:
        w, h, c = self.network.in_dims
        return int(w), int(h), int(c)

    def label(self, class_id: Optional[int]) -> str:
        if class_id is None:
            return "object"
        if 0 <= class_id < len(self.names) and self.names[class_id]:
            return self.names[class_id]
        return str(class_id)

    @property
    def resizable(self) -> bool:
        """Networks without a `resizable` attribute are assumed fully convolutional."""
        return bool(getattr(self.network, "resizable", True))

    def resize_input(self, w: int, h: int) -> None:
        self.network.resize(w, h)

    def forward(self, blob: np.ndarray) -> Tuple[np.ndarray, ...]:
        return tuple(np.asarray(o) for o in self.network.forward(blob))

    def close(self) -> None:
        close = getattr(self.network, "close", None)
        if callable(close):
            close()


def load_model(config: ModelConfig) -> ModelHandle:
    """
    Parse the Darknet metadata, load the names and open the ONNX weights.

    Blocking and potentially slow; meant to run as a ModelLifecycle loader.
    """
    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    data: Dict[str, str] = read_data_config(config.resolve(config.datacfg)) if config.datacfg else {}
    net_cfg = read_network_config(config.resolve(config.cfgfile), activated=config.activated)

    if "classes" in data and int(data["classes"]) != net_cfg.classes:
        raise ValueError(
            f"Data config declares {data['classes']} classes but the network has {net_cfg.classes}"
        )

    namefile = config.namefile or data.get("names", "")
    names: Tuple[str, ...] = load_class_names(config.resolve(namefile)) if namefile else ()
    if names and len(names) != net_cfg.classes:
        logger.warning("Names file has %d entries for %d classes", len(names), net_cfg.classes)

    tree = load_label_tree(config.resolve(net_cfg.tree)) if net_cfg.tree else None

    network = OnnxRuntimeBackend(
        config.resolve(config.weightfile),
        OnnxRuntimeBackendConfig(
            in_dims=(net_cfg.width, net_cfg.height, net_cfg.channels),
            threads=config.threads,
        ),
    )
    logger.info(
        "Model ready: input %dx%dx%d, %d classes, %d detection layers",
        net_cfg.width,
        net_cfg.height,
        net_cfg.channels,
        net_cfg.classes,
        len(net_cfg.layers),
    )
    return ModelHandle(
        network=network,
        num_classes=net_cfg.classes,
        names=names,
        layers=net_cfg.layers,
        tree=tree,
    )
