import json
import tempfile
import unittest
from pathlib import Path

from pose_kit.config import PostProfile, load_post_config, load_post_profile
from pose_kit.postprocess import PosePostConfig
from pose_kit.types import Size


class TestPostProfile(unittest.TestCase):
    def _write_profile(self, payload) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "post.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_load_ok(self) -> None:
        path = self._write_profile(
            {
                "schema_version": 1,
                "conf_threshold": 0.4,
                "overlap_threshold": 0.6,
                "max_detections": 10,
                "workers": 4,
                "min_anchors_per_worker": 512,
                "model_input_size": [640, 384],
                "notes": "front camera",
            }
        )
        profile = load_post_profile(path)
        self.assertIsInstance(profile, PostProfile)
        self.assertEqual(profile.config.conf_threshold, 0.4)
        self.assertEqual(profile.config.overlap_threshold, 0.6)
        self.assertEqual(profile.config.max_detections, 10)
        self.assertEqual(profile.config.workers, 4)
        self.assertEqual(profile.config.min_anchors_per_worker, 512)
        self.assertEqual(profile.model_input_size, Size(640, 384))
        self.assertEqual(profile.notes, "front camera")

    def test_defaults_for_missing_keys(self) -> None:
        path = self._write_profile({"schema_version": 1})
        cfg = load_post_config(path)
        self.assertEqual(cfg, PosePostConfig())
        self.assertEqual(load_post_profile(path).model_input_size, Size(640, 640))

    def test_unknown_keys_rejected(self) -> None:
        path = self._write_profile({"schema_version": 1, "iou_threshold": 0.5})
        with self.assertRaises(ValueError):
            load_post_profile(path)

    def test_schema_version(self) -> None:
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile({"conf_threshold": 0.4}))
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile({"schema_version": 2}))

    def test_type_checks(self) -> None:
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile({"schema_version": 1, "conf_threshold": True}))
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile({"schema_version": 1, "workers": 2.5}))
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile({"schema_version": 1, "model_input_size": [640]}))
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile({"schema_version": 1, "notes": 3}))

    def test_out_of_range_rejected_at_load(self) -> None:
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile({"schema_version": 1, "overlap_threshold": 1.2}))
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile({"schema_version": 1, "workers": 0}))

    def test_invalid_json(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_post_profile(path)
        with self.assertRaises(ValueError):
            load_post_profile(self._write_profile([1, 2, 3]))

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_post_profile(Path("/nonexistent/post.json"))


if __name__ == "__main__":
    unittest.main()
