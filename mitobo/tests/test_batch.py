# mitobo/tests/test_batch.py
# Unit tests for mitobo/core/batch.py - parallel batch processing

import os
import sys
import unittest

import numpy as np

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.batch import (
    _process_single_image,
    measure_batch,
    process_batch_parallel,
    process_batch_sequential,
    threshold_batch,
)
from core.morphology import RegionMorphology
from core.processing import DEFAULTS


def _make_circle_image(h=100, w=100, cx=50, cy=50, r=20) -> np.ndarray:
    """Create a grayscale image with a white circle on black background."""
    img = np.zeros((h, w), dtype=np.uint8)
    yy, xx = np.ogrid[:h, :w]
    mask = (xx - cx)**2 + (yy - cy)**2 <= r**2
    img[mask] = 255
    return img


def _make_halo_image(h=120, w=120) -> np.ndarray:
    """Bright cores inside dim halos, plus one halo without a core."""
    img = np.zeros((h, w), dtype=np.uint8)
    yy, xx = np.ogrid[:h, :w]
    for cx, cy, core in [(30, 30, True), (90, 30, True), (60, 90, False)]:
        img[(xx - cx)**2 + (yy - cy)**2 <= 18**2] = 100
        if core:
            img[(xx - cx)**2 + (yy - cy)**2 <= 5**2] = 230
    return img


class TestProcessSingleImage(unittest.TestCase):
    """Tests for the worker function _process_single_image."""

    def setUp(self):
        self.hyst_params = dict(DEFAULTS["hysteresis"])
        self.morph_params = dict(DEFAULTS["morphology"])

    def test_returns_tuple_of_five(self):
        img = _make_circle_image()
        result = _process_single_image(img, self.hyst_params, self.morph_params, image_index=0)
        self.assertIsInstance(result, tuple)
        self.assertEqual(len(result), 5)

    def test_index_preserved(self):
        img = _make_circle_image()
        idx, _, _, meta, morphology = _process_single_image(
            img, self.hyst_params, self.morph_params, image_index=42)
        self.assertEqual(idx, 42)
        self.assertEqual(meta["imageIndex"], 42)
        self.assertTrue(all(rec.image_index == 42 for rec in morphology))

    def test_binary_is_uint8(self):
        img = _make_circle_image()
        _, binary, _, _, _ = _process_single_image(img, self.hyst_params, self.morph_params)
        self.assertEqual(binary.dtype, np.uint8)
        self.assertTrue(set(np.unique(binary)).issubset({0, 255}))

    def test_labels_are_int32(self):
        img = _make_halo_image()
        _, _, labels, meta, _ = _process_single_image(
            img, {"lowT": 70, "highT": 150}, self.morph_params)
        self.assertEqual(labels.dtype, np.int32)
        self.assertEqual(int(labels.max()), 2)
        self.assertEqual(meta["numComponents"], 2)

    def test_morphology_none_when_disabled(self):
        img = _make_circle_image()
        _, _, _, _, morphology = _process_single_image(img, self.hyst_params, {"enabled": False})
        self.assertIsNone(morphology)

    def test_volume_has_no_morphology(self):
        vol = np.stack([_make_circle_image()] * 3)
        _, binary, _, _, morphology = _process_single_image(vol, self.hyst_params, self.morph_params)
        self.assertEqual(binary.shape, vol.shape)
        self.assertIsNone(morphology)


class TestProcessBatchSequential(unittest.TestCase):
    """Tests for process_batch_sequential."""

    def test_empty_list_returns_empty(self):
        binaries, labels, morph = process_batch_sequential([])
        self.assertEqual(len(binaries), 0)
        self.assertEqual(len(labels), 0)
        self.assertEqual(len(morph), 0)

    def test_single_image(self):
        img = _make_circle_image()
        binaries, labels, morph = process_batch_sequential([img])
        self.assertEqual(len(binaries), 1)
        self.assertEqual(len(labels), 1)
        self.assertEqual(len(morph), 1)

    def test_multiple_images(self):
        imgs = [_make_circle_image(cx=30+i*10) for i in range(5)]
        binaries, labels, _ = process_batch_sequential(imgs)
        self.assertEqual(len(binaries), 5)
        self.assertEqual(len(labels), 5)

    def test_progress_callback_called(self):
        imgs = [_make_circle_image() for _ in range(3)]
        progress_calls = []
        def cb(completed, total):
            progress_calls.append((completed, total))
        process_batch_sequential(imgs, progress_callback=cb)
        self.assertEqual(len(progress_calls), 3)
        self.assertEqual(progress_calls[-1], (3, 3))

    def test_invalid_params_raise(self):
        imgs = [_make_circle_image() for _ in range(3)]
        with self.assertRaises(ValueError):
            process_batch_sequential(imgs, {"lowT": 200, "highT": 100})


class TestProcessBatchParallel(unittest.TestCase):
    """Tests for process_batch_parallel (uses ProcessPoolExecutor)."""

    def test_empty_list_returns_empty(self):
        binaries, _, _ = process_batch_parallel([])
        self.assertEqual(len(binaries), 0)

    def test_single_image_works(self):
        img = _make_circle_image()
        binaries, _, _ = process_batch_parallel([img], max_workers=1)
        self.assertEqual(len(binaries), 1)
        self.assertEqual(binaries[0].dtype, np.uint8)

    def test_results_match_sequential(self):
        """Parallel and sequential should produce identical results."""
        imgs = [_make_halo_image(), _make_circle_image(r=15), _make_circle_image(cx=40, r=25)]
        hyst_params = {"lowT": 70, "highT": 150}

        bin_seq, lab_seq, morph_seq = process_batch_sequential(imgs, hyst_params)
        bin_par, lab_par, morph_par = process_batch_parallel(imgs, hyst_params, max_workers=2)

        for i in range(3):
            np.testing.assert_array_equal(bin_seq[i], bin_par[i])
            np.testing.assert_array_equal(lab_seq[i], lab_par[i])
            self.assertEqual(morph_seq[i], morph_par[i])

    def test_order_preserved(self):
        imgs = [_make_circle_image(r=5 + 5 * i) for i in range(4)]
        binaries, _, _ = process_batch_parallel(imgs, max_workers=2)
        areas = [int(np.count_nonzero(b)) for b in binaries]
        self.assertEqual(areas, sorted(areas))

    def test_worker_error_propagates(self):
        imgs = [_make_circle_image() for _ in range(4)]
        with self.assertRaises(ValueError):
            process_batch_parallel(imgs, {"lowT": 200, "highT": 100}, max_workers=2)


class TestThresholdBatch(unittest.TestCase):
    """Tests for threshold_batch convenience function."""

    def test_returns_binaries_only(self):
        imgs = [_make_circle_image(), _make_halo_image()]
        binaries = threshold_batch(imgs, 70, 150)
        self.assertEqual(len(binaries), 2)
        for b in binaries:
            self.assertEqual(b.dtype, np.uint8)

    def test_halo_without_core_dropped(self):
        binary = threshold_batch([_make_halo_image()], 70, 150)[0]
        self.assertEqual(binary[30, 30], 255)
        self.assertEqual(binary[30, 45], 255)  # halo reached from the core
        self.assertEqual(binary[90, 60], 0)

    def test_custom_params(self):
        binary = threshold_batch([_make_halo_image()], 70, 150, connectivity=4, foreground=1)[0]
        self.assertEqual(int(binary.max()), 1)


class TestMeasureBatch(unittest.TestCase):
    """Tests for measure_batch convenience function.

    measure_batch returns a flat list of RegionMorphology across all images.
    """

    def test_returns_flat_list(self):
        lab1 = np.zeros((50, 50), dtype=np.int32)
        lab1[10:20, 10:20] = 1
        lab2 = np.zeros((50, 50), dtype=np.int32)
        lab2[5:15, 5:15] = 1
        lab2[25:40, 25:40] = 2

        recs = measure_batch([lab1, lab2])
        self.assertEqual(len(recs), 3)
        self.assertTrue(all(isinstance(r, RegionMorphology) for r in recs))
        self.assertEqual([r.image_index for r in recs], [0, 1, 1])

    def test_handles_none_labels(self):
        lab1 = np.zeros((50, 50), dtype=np.int32)
        lab1[10:20, 10:20] = 1
        recs = measure_batch([lab1, None, lab1])
        self.assertEqual(len(recs), 2)

    def test_params_passed_on(self):
        lab = np.zeros((50, 50), dtype=np.int32)
        lab[10:30, 10:30] = 1
        with self.assertRaises(ValueError):
            measure_batch([lab], k=1)


if __name__ == "__main__":
    unittest.main()
