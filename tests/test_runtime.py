import threading
import time
import unittest

import numpy as np

from pose_kit.postprocess import PosePostprocessor
from pose_kit.runtime import FrameWorker
from pose_kit.types import Size


class _GatedPostprocessor:
    """Stand-in that blocks until `gate` opens, then honors the cancel token."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.gate = threading.Event()
        self.seen = []
        self.tokens = []

    def process(self, preds, buffer_size, *, model_input_size=None, cancel=None):
        self.seen.append(preds)
        self.tokens.append(cancel)
        self.started.set()
        self.gate.wait(5.0)
        if cancel is not None:
            cancel.raise_if_cancelled()
        return [preds]


class _SlowPostprocessor:
    def __init__(self, seconds: float) -> None:
        self.seconds = seconds

    def process(self, preds, buffer_size, *, model_input_size=None, cancel=None):
        time.sleep(self.seconds)
        if cancel is not None:
            cancel.raise_if_cancelled()
        return [preds]


class _FailingPostprocessor:
    def process(self, preds, buffer_size, *, model_input_size=None, cancel=None):
        raise RuntimeError("boom")


class _Collector:
    def __init__(self) -> None:
        self.results = []

    def __call__(self, frame_id, detections) -> None:
        self.results.append((frame_id, detections))


class TestFrameWorkerPolicies(unittest.TestCase):
    def test_latest_keeps_only_newest_pending_frame(self) -> None:
        post = _GatedPostprocessor()
        collect = _Collector()
        with FrameWorker(post, collect, policy="latest") as worker:
            self.assertTrue(worker.submit("f0", (1920, 1080)))
            self.assertTrue(post.started.wait(5.0))
            self.assertTrue(worker.submit("f1", (1920, 1080)))
            self.assertTrue(worker.submit("f2", (1920, 1080)))
            post.gate.set()
            self.assertTrue(worker.wait_idle(5.0))

        self.assertEqual(post.seen, ["f0", "f2"])
        self.assertEqual(collect.results, [(0, ["f0"]), (2, ["f2"])])
        self.assertEqual(worker.cancelled, 0)
        self.assertEqual(worker.dropped, 1)
        self.assertEqual(worker.processed, 2)

    def test_latest_keeps_delivering_when_processing_is_slower_than_input(self) -> None:
        collect = _Collector()
        with FrameWorker(_SlowPostprocessor(0.03), collect, policy="latest") as worker:
            for i in range(30):
                worker.submit(i, (1920, 1080))
                time.sleep(0.005)
            delivered_during_stream = len(collect.results)
            self.assertTrue(worker.wait_idle(5.0))

        self.assertGreaterEqual(delivered_during_stream, 1)
        self.assertEqual(worker.cancelled, 0)
        self.assertEqual(worker.processed + worker.dropped, 30)
        ids = [frame_id for frame_id, _ in collect.results]
        self.assertEqual(ids, sorted(ids))
        self.assertEqual(ids[-1], 29)

    def test_stop_cancels_frame_in_flight(self) -> None:
        post = _GatedPostprocessor()
        collect = _Collector()
        worker = FrameWorker(post, collect).start()
        worker.submit("f0", (1920, 1080))
        self.assertTrue(post.started.wait(5.0))

        stopper = threading.Thread(target=worker.stop)
        stopper.start()
        deadline = time.monotonic() + 5.0
        while not post.tokens[0].cancelled and time.monotonic() < deadline:
            time.sleep(0.001)
        post.gate.set()
        stopper.join(5.0)

        self.assertFalse(worker.running)
        self.assertEqual(worker.cancelled, 1)
        self.assertEqual(collect.results, [])

    def test_drop_if_busy(self) -> None:
        post = _GatedPostprocessor()
        collect = _Collector()
        with FrameWorker(post, collect, policy="drop") as worker:
            self.assertTrue(worker.submit("f0", (1920, 1080), frame_id=10))
            self.assertTrue(post.started.wait(5.0))
            self.assertFalse(worker.submit("f1", (1920, 1080)))
            post.gate.set()
            self.assertTrue(worker.wait_idle(5.0))
            self.assertTrue(worker.submit("f2", (1920, 1080)))
            self.assertTrue(worker.wait_idle(5.0))

        self.assertEqual(collect.results, [(10, ["f0"]), (12, ["f2"])])
        self.assertEqual(worker.dropped, 1)
        self.assertEqual(worker.cancelled, 0)

    def test_failure_delivers_empty_result(self) -> None:
        collect = _Collector()
        with self.assertLogs("pose_kit.runtime", level="ERROR"):
            with FrameWorker(_FailingPostprocessor(), collect) as worker:
                worker.submit(np.zeros((1, 5, 1), dtype=np.float32), (640, 480))
                self.assertTrue(worker.wait_idle(5.0))
        self.assertEqual(collect.results, [(0, [])])
        self.assertEqual(worker.failed, 1)

    def test_submit_requires_running_worker(self) -> None:
        worker = FrameWorker(_GatedPostprocessor(), _Collector())
        with self.assertRaises(RuntimeError):
            worker.submit("f0", (640, 480))

    def test_invalid_policy(self) -> None:
        with self.assertRaises(ValueError):
            FrameWorker(_GatedPostprocessor(), _Collector(), policy="queue")


class TestFrameWorkerWithPostprocessor(unittest.TestCase):
    def test_detections_and_empty_frames_are_delivered(self) -> None:
        tensor = np.zeros((1, 5, 2), dtype=np.float32)
        tensor[0, :, 0] = [100, 100, 50, 50, 0.9]
        tensor[0, :, 1] = [100, 100, 50, 50, 0.6]
        malformed = np.zeros((1, 6, 2), dtype=np.float32)

        collect = _Collector()
        with PosePostprocessor(model_input_size=Size(640, 640)) as post:
            with FrameWorker(post, collect, policy="drop") as worker:
                worker.submit(tensor, Size(1920, 1080))
                self.assertTrue(worker.wait_idle(5.0))
                worker.submit(malformed, Size(1920, 1080))
                self.assertTrue(worker.wait_idle(5.0))

        self.assertEqual(len(collect.results), 2)
        frame0, dets0 = collect.results[0]
        self.assertEqual(frame0, 0)
        self.assertEqual(len(dets0), 1)
        self.assertTrue(np.allclose(dets0[0].box.xywh, (225.0, 126.5625, 150.0, 84.375)))
        self.assertEqual(collect.results[1], (1, []))


if __name__ == "__main__":
    unittest.main()
