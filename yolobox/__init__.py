"""
Object-detection post-processing and model lifecycle for YOLO-family networks.

Loads a Darknet-described network in the background, letterboxes frames into
it, decodes the raw heads, applies per-class NMS and maps boxes back to the
caller's image. Core pieces depend only on NumPy; OpenCV is used for
letterboxing and drawing, ONNX Runtime for the bundled forward pass.
"""

from .types import Candidates, Detection, DetectionMessage
from .errors import DimensionError, LoadFailedError, NotReadyError, StateError, YoloboxError
from .letterbox import LetterboxTransform, compute_letterbox, letterbox, to_network_space, to_original_space
from .decode import BoxDecoder, FlatScoring, HierarchicalScoring, LabelTree, LayerSpec
from .nms import NMSConfig, Suppressor, iou, nms
from .lifecycle import LifecycleState, ModelLifecycle
from .metadata import load_class_names, load_label_tree
from .model import ModelConfig, ModelHandle, load_model, load_model_config, resolve_path
from .pipeline import DetectionPipeline, PipelineConfig, PipelineStage
from .visualize import draw_detections

__all__ = [
    "Candidates",
    "Detection",
    "DetectionMessage",
    "YoloboxError",
    "NotReadyError",
    "LoadFailedError",
    "StateError",
    "DimensionError",
    "LetterboxTransform",
    "compute_letterbox",
    "letterbox",
    "to_network_space",
    "to_original_space",
    "BoxDecoder",
    "FlatScoring",
    "HierarchicalScoring",
    "LabelTree",
    "LayerSpec",
    "NMSConfig",
    "Suppressor",
    "iou",
    "nms",
    "LifecycleState",
    "ModelLifecycle",
    "load_class_names",
    "load_label_tree",
    "ModelConfig",
    "ModelHandle",
    "load_model",
    "load_model_config",
    "resolve_path",
    "DetectionPipeline",
    "PipelineConfig",
    "PipelineStage",
    "draw_detections",
]
