from __future__ import annotations

import argparse
import logging
import statistics
import time
from dataclasses import dataclass
from typing import Callable, List

import numpy as np
from tqdm import tqdm

from pose_kit import FrameWorker, NMSConfig, PosePostConfig, PosePostprocessor, Size, TensorDecoder, decode, nms
from pose_kit.config import load_post_profile


@dataclass(frozen=True)
class LatencyStats:
    """Per-call latency of one benchmarked stage, in milliseconds."""

    label: str
    calls: int
    mean: float
    median: float
    p95: float
    worst: float

    @classmethod
    def from_seconds(cls, label: str, samples_s: List[float]) -> "LatencyStats":
        if not samples_s:
            return cls(label=label, calls=0, mean=0.0, median=0.0, p95=0.0, worst=0.0)
        ms = np.asarray(samples_s, dtype=np.float64) * 1000.0
        median, p95 = np.percentile(ms, [50.0, 95.0])
        return cls(
            label=label,
            calls=int(ms.size),
            mean=float(ms.mean()),
            median=float(median),
            p95=float(p95),
            worst=float(ms.max()),
        )

    def __str__(self) -> str:
        return (
            f"{self.label:<22} calls={self.calls:<5d} mean={self.mean:8.3f}ms "
            f"median={self.median:8.3f}ms p95={self.p95:8.3f}ms worst={self.worst:8.3f}ms"
        )


def make_synthetic_tensor(
    anchors: int,
    keypoints: int,
    hit_fraction: float,
    model_size: int = 640,
    seed: int = 0,
) -> np.ndarray:
    """
    (1, 5 + 2K, N) float32 tensor; about `hit_fraction` of anchors get a high
    confidence, clustered around a few centers so NMS has work to do.
    """

    rng = np.random.default_rng(seed)
    p = np.zeros((5 + 2 * keypoints, anchors), dtype=np.float32)

    centers = rng.uniform(80, model_size - 80, size=(8, 2))
    pick = rng.integers(0, centers.shape[0], size=anchors)
    p[0:2, :] = (centers[pick] + rng.normal(0, 6, size=(anchors, 2))).T
    p[2:4, :] = rng.uniform(40, 160, size=(2, anchors))
    p[4, :] = rng.uniform(0.0, 0.3, size=anchors)
    hits = rng.random(anchors) < hit_fraction
    p[4, hits] = rng.uniform(0.4, 0.99, size=int(hits.sum()))
    if keypoints:
        p[5:, :] = rng.uniform(0, model_size, size=(2 * keypoints, anchors))
    return p[None, ...]


def _time_loop(label: str, fn: Callable[[], object], warmup: int, repeats: int) -> List[float]:
    for _ in range(warmup):
        fn()
    times: List[float] = []
    for _ in tqdm(range(repeats), desc=label, leave=False):
        t0 = time.perf_counter()
        fn()
        times.append(time.perf_counter() - t0)
    return times


def _run_stream(args: argparse.Namespace, post: PosePostprocessor, frames: List[np.ndarray]) -> None:
    delivered: List[int] = []

    def on_result(frame_id: int, detections: list) -> None:
        delivered.append(len(detections))

    interval = 1.0 / float(args.fps)
    with FrameWorker(post, on_result, policy=args.policy) as worker:
        t_next = time.perf_counter()
        for i in tqdm(range(int(args.repeats)), desc="stream"):
            worker.submit(frames[i % len(frames)], (args.buffer_w, args.buffer_h), frame_id=i)
            t_next += interval
            sleep_s = t_next - time.perf_counter()
            if sleep_s > 0:
                time.sleep(sleep_s)
        worker.wait_idle(timeout=5.0)

    print(
        f"stream policy={args.policy} fps={args.fps}: submitted={args.repeats} processed={worker.processed} "
        f"dropped={worker.dropped} cancelled={worker.cancelled} failed={worker.failed}"
    )
    if delivered:
        print(f"mean detections per delivered frame: {statistics.fmean(delivered):.2f}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Benchmark pose post-processing (decode / NMS / full pipeline) on synthetic tensors."
    )
    parser.add_argument("--anchors", type=int, default=8400, help="Anchor count N (e.g. 8400 for 640 input).")
    parser.add_argument("--keypoints", type=int, default=17, help="Keypoint count K.")
    parser.add_argument("--hit-fraction", type=float, default=0.02, help="Fraction of anchors above threshold.")
    parser.add_argument("--profile", default=None, help="Optional post-processing profile JSON.")
    parser.add_argument("--conf", type=float, default=0.35, help="Confidence threshold.")
    parser.add_argument("--overlap", type=float, default=0.5, help="Overlap (intersection/min area) threshold.")
    parser.add_argument("--workers", type=int, default=4, help="Decode workers for the parallel run.")
    parser.add_argument("--min-anchors-per-worker", type=int, default=1024)
    parser.add_argument("--buffer-w", type=int, default=1920)
    parser.add_argument("--buffer-h", type=int, default=1080)
    parser.add_argument("--warmup", type=int, default=10, help="Warmup iterations to run but not record.")
    parser.add_argument("--repeats", type=int, default=200, help="Recorded iterations (or frames for --stream).")
    parser.add_argument("--stream", action="store_true", help="Feed a FrameWorker at --fps instead of timing stages.")
    parser.add_argument("--fps", type=float, default=30.0, help="Frame rate for --stream.")
    parser.add_argument("--policy", choices=["latest", "drop"], default="latest", help="FrameWorker policy.")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.anchors < 0:
        raise ValueError("--anchors must be >= 0")
    if args.keypoints < 0:
        raise ValueError("--keypoints must be >= 0")
    if not 0.0 <= args.hit_fraction <= 1.0:
        raise ValueError("--hit-fraction must be in [0, 1]")
    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")
    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")
    if args.fps <= 0:
        raise ValueError("--fps must be > 0")

    if args.profile:
        profile = load_post_profile(args.profile)
        cfg = profile.config
        model_size = profile.model_input_size
    else:
        cfg = PosePostConfig(
            conf_threshold=float(args.conf),
            overlap_threshold=float(args.overlap),
            workers=int(args.workers),
            min_anchors_per_worker=int(args.min_anchors_per_worker),
        )
        model_size = Size(640, 640)

    tensor = make_synthetic_tensor(int(args.anchors), int(args.keypoints), float(args.hit_fraction))
    buffer_size = (args.buffer_w, args.buffer_h)

    with PosePostprocessor(cfg, model_input_size=model_size) as post:
        if args.stream:
            frames = [
                make_synthetic_tensor(int(args.anchors), int(args.keypoints), float(args.hit_fraction), seed=s)
                for s in range(8)
            ]
            _run_stream(args, post, frames)
            return 0

        candidates = decode(tensor, cfg.conf_threshold)
        nms_cfg = NMSConfig(overlap_threshold=cfg.overlap_threshold)

        t_serial = _time_loop("decode_serial", lambda: decode(tensor, cfg.conf_threshold), args.warmup, args.repeats)
        with TensorDecoder(cfg.workers, cfg.min_anchors_per_worker) as decoder:
            t_parallel = _time_loop(
                "decode_parallel",
                lambda: decoder.decode(tensor, cfg.conf_threshold),
                args.warmup,
                args.repeats,
            )
        t_nms = _time_loop("nms", lambda: nms(candidates.boxes, candidates.scores, nms_cfg), args.warmup, args.repeats)
        t_full = _time_loop("process", lambda: post.process(tensor, buffer_size), args.warmup, args.repeats)

        n_dets = len(post.process(tensor, buffer_size))

    print(LatencyStats.from_seconds("decode_serial", t_serial))
    print(LatencyStats.from_seconds(f"decode_parallel_x{cfg.workers}", t_parallel))
    print(LatencyStats.from_seconds("nms", t_nms))
    print(LatencyStats.from_seconds("process", t_full))
    print(f"anchors={args.anchors} candidates={len(candidates)} detections={n_dets}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
