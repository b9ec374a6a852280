from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import DimensionError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - in_dims: (w, h, c) the network starts with; spatial dims may be changed
      later with resize() when the export has dynamic spatial axes
    - threads: intra-op thread pool width
    - providers: ORT execution providers (e.g., ["CPUExecutionProvider"])
    - input_name: override the auto-selected input name if needed
    """

    in_dims: Tuple[int, int, int] = (416, 416, 3)
    threads: int = 6
    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None


class OnnxRuntimeBackend:
    """
    ONNX Runtime forward pass for a Darknet-style detector export.

    Expects an NCHW float32 blob shaped (1, C, H, W) and returns every model
    output, one array per detection head, in session output order.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        sess_opts.intra_op_num_threads = int(cfg.threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_names: List[str] = [o.name for o in self.session.get_outputs()]
        self._in_dims = tuple(int(v) for v in cfg.in_dims)
        logger.debug(
            "ONNX session for %s: input=%s outputs=%s providers=%s",
            self.model_path.name,
            self.input_name,
            self.output_names,
            self.providers_in_use,
        )

    @property
    def in_dims(self) -> Tuple[int, int, int]:
        return self._in_dims

    @property
    def resizable(self) -> bool:
        """True when the export declares symbolic (dynamic) H and W input axes."""
        inp = next((i for i in self.session.get_inputs() if i.name == self.input_name), None)
        if inp is None or len(inp.shape) != 4:
            return False
        return not any(isinstance(d, int) for d in inp.shape[2:])

    def resize(self, w: int, h: int) -> None:
        w, h = int(w), int(h)
        if (w, h) == self._in_dims[:2]:
            return
        if not self.resizable:
            raise DimensionError(
                f"{self.model_path.name} has a static {self._in_dims[0]}x{self._in_dims[1]} input; "
                f"cannot resize to {w}x{h}"
            )
        self._in_dims = (w, h, self._in_dims[2])

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    def forward(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> List[np.ndarray]:
        inputs: Dict[str, Any] = {self.input_name: blob}
        if extra_inputs:
            inputs.update(extra_inputs)
        return list(self.session.run(self.output_names, inputs))

    def close(self) -> None:
        self.session = None
