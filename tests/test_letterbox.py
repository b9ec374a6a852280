import unittest

import numpy as np

from yolobox.letterbox import LetterboxTransform, compute_letterbox, letterbox, to_network_space, to_original_space


class TestComputeLetterbox(unittest.TestCase):
    def test_landscape_into_square(self) -> None:
        t = compute_letterbox(640, 480, 416, 416)
        self.assertAlmostEqual(t.scale, 0.65)
        self.assertAlmostEqual(t.pad_x, 0.0)
        self.assertAlmostEqual(t.pad_y, 52.0)
        self.assertEqual(t.resized_size, (416, 312))

    def test_network_center_maps_to_image_center(self) -> None:
        t = compute_letterbox(640, 480, 416, 416)
        box = to_original_space(t, [158.0, 158.0, 258.0, 258.0])
        cx = (box[0] + box[2]) / 2
        cy = (box[1] + box[3]) / 2
        self.assertLess(abs(cx - 320.0), 0.5)
        self.assertLess(abs(cy - 240.0), 0.5)
        self.assertAlmostEqual(box[2] - box[0], 100.0 / 0.65, places=4)

    def test_portrait_pads_x(self) -> None:
        t = compute_letterbox(300, 600, 416, 416)
        self.assertAlmostEqual(t.scale, 416 / 600)
        self.assertAlmostEqual(t.pad_y, 0.0)
        self.assertAlmostEqual(t.pad_x, (416 - 300 * 416 / 600) / 2)

    def test_round_trip_within_half_pixel(self) -> None:
        rng = np.random.default_rng(0)
        sizes = [(640, 480, 416, 416), (1920, 1080, 608, 608), (17, 301, 320, 256), (416, 416, 416, 416)]
        for ow, oh, nw, nh in sizes:
            t = compute_letterbox(ow, oh, nw, nh)
            pts = rng.uniform(0, 1, size=(200, 2)) * np.array([ow, oh])
            back = to_original_space(t, to_network_space(t, pts))
            self.assertTrue(np.all(np.abs(back - pts) <= 0.5), msg=f"size {ow}x{oh}->{nw}x{nh}")

    def test_functions_do_not_mutate_input(self) -> None:
        t = compute_letterbox(640, 480, 416, 416)
        pts = np.array([[10.0, 20.0]])
        to_network_space(t, pts)
        self.assertTrue(np.array_equal(pts, np.array([[10.0, 20.0]])))

    def test_invalid_sizes(self) -> None:
        with self.assertRaises(ValueError):
            compute_letterbox(0, 480, 416, 416)
        with self.assertRaises(ValueError):
            compute_letterbox(640, 480, 416, -1)
        with self.assertRaises(ValueError):
            to_network_space(LetterboxTransform.identity(10, 10), [1.0, 2.0, 3.0])


class TestLetterboxImage(unittest.TestCase):
    def test_pads_with_neutral_grey(self) -> None:
        img = np.zeros((480, 640, 3), dtype=np.uint8)
        padded, t = letterbox(img, new_shape=(416, 416))
        self.assertEqual(padded.shape, (416, 416, 3))
        self.assertAlmostEqual(t.pad_y, 52.0)
        self.assertTrue(np.all(padded[:52] == 127))
        self.assertTrue(np.all(padded[-52:] == 127))
        self.assertTrue(np.all(padded[52:-52] == 0))

    def test_transform_matches_integer_placement(self) -> None:
        img = np.zeros((250, 300, 3), dtype=np.uint8)
        padded, t = letterbox(img, new_shape=(320, 256))
        # 300 * 1.024 = 307.2 rounds to 307 columns, leaving 13 to split 6 / 7
        self.assertEqual(t.pad_x, 6.0)
        self.assertEqual(t.pad_y, 0.0)
        self.assertTrue(np.all(padded[:, :6] == 127))
        self.assertTrue(np.all(padded[:, 6:313] == 0))
        self.assertTrue(np.all(padded[:, 313:] == 127))

        left_edge = to_network_space(t, [0.0, 0.0])
        self.assertEqual(left_edge[0], 6.0)
        center = to_original_space(t, [6.0 + 307 / 2, 128.0])
        self.assertLess(abs(center[0] - 150.0), 0.25)

    def test_single_channel_keeps_channel_axis(self) -> None:
        img = np.full((100, 200, 1), 255, dtype=np.uint8)
        padded, _ = letterbox(img, new_shape=(64, 64))
        self.assertEqual(padded.shape, (64, 64, 1))


if __name__ == "__main__":
    unittest.main()
