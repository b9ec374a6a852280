import argparse
import logging
import time
from pathlib import Path

import cv2
import numpy as np

from yolobox import DetectionPipeline, DetectionMessage, ModelConfig, NotReadyError, load_model_config
from yolobox.errors import LoadFailedError


class PrintEmitter:
    def emit(self, message: DetectionMessage) -> None:
        print(message.format())


def _side_by_side(pipeline: DetectionPipeline, frame_bgr: np.ndarray, emitter: PrintEmitter) -> np.ndarray:
    h, w = frame_bgr.shape[:2]
    pipeline.predict(cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB))
    pipeline.compute_boxes(w, h)

    canvas = np.zeros((h, 2 * w, 3), dtype=np.uint8)
    canvas[:, :w] = frame_bgr
    canvas[:, w:] = frame_bgr
    pipeline.draw_detections(canvas, w, h, w, 0)
    pipeline.send_serial(emitter, w, h)
    return canvas


def main() -> int:
    parser = argparse.ArgumentParser(description="Detect objects and show original + annotated frames side by side.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index (e.g., 0).")
    parser.add_argument("--config", default=None, help="JSON model config (dataroot, cfgfile, weightfile, ...).")
    parser.add_argument("--dataroot", default=None, help="Root for relative config/weight/name paths.")
    parser.add_argument("--datacfg", default=None, help="Darknet .data file.")
    parser.add_argument("--cfgfile", default=None, help="Darknet .cfg network description.")
    parser.add_argument("--weightfile", default=None, help="ONNX export of the network.")
    parser.add_argument("--namefile", default=None, help="Category names file.")
    parser.add_argument("--thresh", type=float, default=None, help="Detection threshold in percent.")
    parser.add_argument("--hierthresh", type=float, default=None, help="Hierarchical threshold in percent.")
    parser.add_argument("--nms", type=float, default=None, help="NMS IoU threshold in percent.")
    parser.add_argument("--threads", type=int, default=None, help="Forward-pass threads.")
    parser.add_argument(
        "--activated",
        action="store_const",
        const=True,
        default=None,
        help="The exported heads already apply the logistic (default: raw logits).",
    )
    parser.add_argument("--load-timeout", type=float, default=120.0, help="Seconds to wait for the model (image mode).")
    parser.add_argument("--show", action="store_true", help="Show a window with the visualization.")
    parser.add_argument("--out", default=None, help="Optional output path (image or video).")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames (0 = no limit).")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    log = logging.getLogger("detect_image")

    overrides = {
        k: getattr(args, k)
        for k in (
            "dataroot",
            "datacfg",
            "cfgfile",
            "weightfile",
            "namefile",
            "thresh",
            "hierthresh",
            "nms",
            "threads",
            "activated",
        )
    }
    if args.config:
        model_cfg = load_model_config(Path(args.config), **overrides)
    else:
        model_cfg = ModelConfig(**{k: v for k, v in overrides.items() if v is not None})

    emitter = PrintEmitter()
    with DetectionPipeline(model_cfg) as pipeline:
        pipeline.start()

        if args.image is not None:
            img = cv2.imread(args.image)
            if img is None:
                raise FileNotFoundError(f"Could not read image at path: {args.image}")
            if not pipeline.lifecycle.wait(timeout=args.load_timeout):
                raise TimeoutError(f"Model did not load within {args.load_timeout:.0f}s")
            vis = _side_by_side(pipeline, img, emitter)
            if args.out and not cv2.imwrite(args.out, vis):
                raise RuntimeError(f"Failed to write output image: {args.out}")
            if args.show:
                cv2.imshow("detections", vis)
                cv2.waitKey(0)
                cv2.destroyAllWindows()
            return 0

        if args.max_frames < 0:
            raise ValueError("--max-frames must be >= 0")
        cap = cv2.VideoCapture(args.video if args.video is not None else int(args.webcam))
        if not cap.isOpened():
            raise RuntimeError(f"Could not open source: {args.video or args.webcam}")

        writer = None
        processed = 0
        skipped = 0
        try:
            while True:
                ok, frame = cap.read()
                if not ok or frame is None:
                    break

                try:
                    vis = _side_by_side(pipeline, frame, emitter)
                except LoadFailedError:
                    raise
                except NotReadyError:
                    skipped += 1
                    time.sleep(0.01)
                    continue

                if args.out and writer is None:
                    fps = cap.get(cv2.CAP_PROP_FPS)
                    if fps is None or fps <= 0:
                        fps = 30.0
                    h, w = vis.shape[:2]
                    writer = cv2.VideoWriter(args.out, cv2.VideoWriter_fourcc(*"mp4v"), fps, (w, h))
                    if not writer.isOpened():
                        raise RuntimeError(f"Failed to open video writer: {args.out}")
                if writer is not None:
                    writer.write(vis)

                if args.show:
                    cv2.imshow("detections", vis)
                    key = cv2.waitKey(1) & 0xFF
                    if key in (27, ord("q")):
                        break

                processed += 1
                if args.max_frames and processed >= args.max_frames:
                    break
        finally:
            cap.release()
            if writer is not None:
                writer.release()
            if args.show:
                cv2.destroyAllWindows()

        log.info("Processed %d frames, skipped %d while the model was loading", processed, skipped)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
