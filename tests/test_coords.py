import unittest

import numpy as np

from pose_kit.coords import (
    CoordinateMapper,
    boxes_to_normalized,
    normalized_boxes_to_buffer,
    normalized_points_to_buffer,
    points_to_normalized,
)
from pose_kit.types import CandidateBatch, Size


class TestCoordinateFunctions(unittest.TestCase):
    def test_worked_example(self) -> None:
        norm = boxes_to_normalized(np.array([[75, 75, 50, 50]]), Size(640, 640))
        self.assertTrue(np.allclose(norm, [[0.1171875, 0.1171875, 0.078125, 0.078125]]))
        buf = normalized_boxes_to_buffer(norm, Size(1920, 1080))
        self.assertTrue(np.allclose(buf, [[225.0, 126.5625, 150.0, 84.375]]))

    def test_non_square_model_input(self) -> None:
        norm = boxes_to_normalized(np.array([[64, 48, 32, 24]]), (640, 480))
        self.assertTrue(np.allclose(norm, [[0.1, 0.1, 0.05, 0.05]]))

    def test_points(self) -> None:
        norm = points_to_normalized(np.array([[320, 160], [0, 640]]), (640, 640))
        self.assertTrue(np.allclose(norm, [[0.5, 0.25], [0.0, 1.0]]))
        buf = normalized_points_to_buffer(norm, (1920, 1080))
        self.assertTrue(np.allclose(buf, [[960, 270], [0, 1080]]))

    def test_no_clamping(self) -> None:
        norm = boxes_to_normalized(np.array([[-64, 700, 128, 64]]), (640, 640))
        self.assertTrue(np.allclose(norm, [[-0.1, 1.09375, 0.2, 0.1]]))
        self.assertLess(norm[0, 0], 0.0)
        self.assertGreater(norm[0, 1], 1.0)

    def test_invalid_sizes(self) -> None:
        with self.assertRaises(ValueError):
            boxes_to_normalized(np.zeros((1, 4)), (0, 640))
        with self.assertRaises(ValueError):
            normalized_points_to_buffer(np.zeros((1, 2)), (1920, -1))
        with self.assertRaises(ValueError):
            CoordinateMapper((640, 0))


class TestCoordinateMapper(unittest.TestCase):
    def _batch(self) -> CandidateBatch:
        return CandidateBatch(
            boxes=np.array([[75, 75, 50, 50], [0, 0, 640, 640]], dtype=np.float32),
            scores=np.array([0.9, 0.8], dtype=np.float32),
            features=np.array([[320, 320, 64, 128], [0, 0, 640, 640]], dtype=np.float32),
        )

    def test_map_boxes_and_keypoints(self) -> None:
        mapped = CoordinateMapper(Size(640, 640)).map(self._batch(), Size(1920, 1080))
        self.assertEqual(len(mapped), 2)
        self.assertEqual(mapped.keypoints_normalized.shape, (2, 2, 2))
        self.assertTrue(np.allclose(mapped.boxes_buffer[0], [225.0, 126.5625, 150.0, 84.375]))
        self.assertTrue(np.allclose(mapped.boxes_normalized[1], [0, 0, 1, 1]))
        self.assertTrue(np.allclose(mapped.keypoints_normalized[0], [[0.5, 0.5], [0.1, 0.2]]))
        self.assertTrue(np.allclose(mapped.keypoints_buffer[0], [[960, 540], [192, 216]]))

    def test_buffer_follows_normalized_when_buffer_changes(self) -> None:
        mapper = CoordinateMapper(Size(640, 640))
        landscape = mapper.map(self._batch(), (1920, 1080))
        portrait = mapper.map(self._batch(), (1080, 1920))
        self.assertTrue(np.allclose(landscape.boxes_normalized, portrait.boxes_normalized))
        self.assertTrue(np.allclose(portrait.boxes_buffer[1], [0, 0, 1080, 1920]))

    def test_empty_batch(self) -> None:
        mapped = CoordinateMapper().map(CandidateBatch.empty(34), (1920, 1080))
        self.assertEqual(len(mapped), 0)
        self.assertEqual(mapped.boxes_buffer.shape, (0, 4))
        self.assertEqual(mapped.keypoints_buffer.shape, (0, 17, 2))


if __name__ == "__main__":
    unittest.main()
