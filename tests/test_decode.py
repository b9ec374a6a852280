import unittest

import numpy as np

from yolobox.decode import BoxDecoder, FlatScoring, HierarchicalScoring, LabelTree, LayerSpec


def _yolo_head(num_anchors: int, num_classes: int, gh: int, gw: int) -> np.ndarray:
    return np.zeros((num_anchors, 5 + num_classes, gh, gw), dtype=np.float32)


class TestYoloLayerDecode(unittest.TestCase):
    def setUp(self) -> None:
        self.spec = LayerSpec(kind="yolo", anchors=((10.0, 20.0),), activated=True)
        self.decoder = BoxDecoder([self.spec], num_classes=2)

    def test_single_cell(self) -> None:
        p = _yolo_head(1, 2, 2, 2)
        # row 1, col 0
        p[0, :, 1, 0] = [0.5, 0.5, 0.0, 0.0, 0.9, 0.2, 0.8]
        cands = self.decoder.decode([p], net_size=(64, 64), thresh=0.24)
        self.assertEqual(len(cands), 1)
        self.assertTrue(np.allclose(cands.boxes[0], [11.0, 38.0, 21.0, 58.0], atol=1e-4))
        self.assertTrue(np.allclose(cands.scores, [0.72], atol=1e-6))
        self.assertEqual(int(cands.class_ids[0]), 1)

    def test_flattened_channels_with_batch_axis(self) -> None:
        spec = LayerSpec(kind="yolo", anchors=((10.0, 20.0), (6.0, 6.0)))
        decoder = BoxDecoder([spec], num_classes=2)
        p = _yolo_head(2, 2, 2, 2)
        p[1, :, 0, 1] = [0.5, 0.5, 0.0, 0.0, 0.9, 0.9, 0.1]
        flat = p.reshape(1, 14, 2, 2)
        cands = decoder.decode([flat], net_size=(64, 64), thresh=0.24)
        self.assertEqual(len(cands), 1)
        self.assertTrue(np.allclose(cands.boxes[0], [45.0, 13.0, 51.0, 19.0], atol=1e-4))
        self.assertEqual(int(cands.class_ids[0]), 0)

    def test_threshold_of_one_yields_nothing(self) -> None:
        p = _yolo_head(1, 2, 3, 3)
        p[:, 4] = 1.0
        p[:, 5] = 1.0
        self.assertEqual(len(self.decoder.decode([p], net_size=(96, 96), thresh=1.0)), 0)

    def test_confidence_must_exceed_threshold(self) -> None:
        p = _yolo_head(1, 2, 1, 1)
        p[0, :, 0, 0] = [0.5, 0.5, 0.0, 0.0, 0.5, 0.5, 0.0]  # conf 0.25
        self.assertEqual(len(self.decoder.decode([p], net_size=(32, 32), thresh=0.25)), 0)
        self.assertEqual(len(self.decoder.decode([p], net_size=(32, 32), thresh=0.2)), 1)

    def test_order_is_row_col_anchor(self) -> None:
        spec = LayerSpec(kind="yolo", anchors=((4.0, 4.0), (8.0, 8.0)))
        decoder = BoxDecoder([spec], num_classes=1)
        p = _yolo_head(2, 1, 2, 2)
        p[:, 4] = 0.9
        p[:, 5] = 1.0
        p[:, 0] = 0.5
        p[:, 1] = 0.5
        cands = decoder.decode([p], net_size=(32, 32), thresh=0.1)
        self.assertEqual(len(cands), 8)
        centers = (cands.boxes[:, :2] + cands.boxes[:, 2:]) / 2
        widths = cands.boxes[:, 2] - cands.boxes[:, 0]
        expected_centers = [(8, 8), (8, 8), (24, 8), (24, 8), (8, 24), (8, 24), (24, 24), (24, 24)]
        self.assertTrue(np.allclose(centers, expected_centers, atol=1e-4))
        self.assertTrue(np.allclose(widths, [4, 8] * 4, atol=1e-4))

    def test_multiple_heads_concatenate(self) -> None:
        small = LayerSpec(kind="yolo", anchors=((10.0, 14.0),))
        large = LayerSpec(kind="yolo", anchors=((81.0, 82.0),))
        decoder = BoxDecoder([small, large], num_classes=1)
        a = _yolo_head(1, 1, 2, 2)
        b = _yolo_head(1, 1, 1, 1)
        a[0, :, 0, 0] = [0.5, 0.5, 0.0, 0.0, 0.8, 1.0]
        b[0, :, 0, 0] = [0.5, 0.5, 0.0, 0.0, 0.7, 1.0]
        cands = decoder.decode([a, b], net_size=(64, 64), thresh=0.5)
        self.assertTrue(np.allclose(cands.scores, [0.8, 0.7]))
        self.assertTrue(np.allclose(cands.boxes[1], [32 - 40.5, 32 - 41.0, 32 + 40.5, 32 + 41.0], atol=1e-4))

    def test_wrong_channel_count(self) -> None:
        with self.assertRaises(ValueError):
            self.decoder.decode([np.zeros((1, 6, 2, 2), dtype=np.float32)], net_size=(64, 64), thresh=0.2)
        with self.assertRaises(ValueError):
            self.decoder.decode([], net_size=(64, 64), thresh=0.2)


class TestRegionLayerDecode(unittest.TestCase):
    def test_raw_logits_and_grid_unit_anchors(self) -> None:
        spec = LayerSpec(kind="region", anchors=((1.0, 2.0),), activated=False)
        decoder = BoxDecoder([spec], num_classes=3)
        p = np.full((1, 8, 4, 4), -20.0, dtype=np.float32)
        # cell (0, 0): x/y logits 0 -> 0.5, objectness logit large, class 2 dominant
        p[0, :, 0, 0] = [0.0, 0.0, 0.0, 0.0, 10.0, 0.0, 0.0, 5.0]
        cands = decoder.decode([p], net_size=(128, 128), thresh=0.3)
        self.assertEqual(len(cands), 1)
        self.assertEqual(int(cands.class_ids[0]), 2)
        # anchor 1x2 cells of 32px
        self.assertTrue(np.allclose(cands.boxes[0], [0.0, -16.0, 32.0, 48.0], atol=1e-3))
        expected = (1 / (1 + np.exp(-10.0))) * (np.exp(5.0) / (np.exp(5.0) + 2.0))
        self.assertAlmostEqual(float(cands.scores[0]), expected, places=5)


class TestFlatLayerDecode(unittest.TestCase):
    def test_n_5_plus_c(self) -> None:
        # (N, 5 + C): [cx, cy, w, h, obj, class_scores...]
        p = np.array(
            [
                [50, 60, 10, 20, 0.5, 0.1, 0.9, 0.2],  # class 1 (0.9)
                [55, 66, 12, 18, 0.8, 0.7, 0.1, 0.2],  # class 0 (0.7)
            ],
            dtype=np.float32,
        )
        decoder = BoxDecoder([LayerSpec(kind="flat")], num_classes=3, scoring=FlatScoring())
        cands = decoder.decode([p], net_size=(128, 128), thresh=0.1)
        self.assertTrue(np.allclose(cands.scores, np.array([0.5 * 0.9, 0.8 * 0.7], dtype=np.float32)))
        self.assertTrue(np.array_equal(cands.class_ids, np.array([1, 0], dtype=np.int64)))
        self.assertTrue(np.allclose(cands.boxes[0], [45, 50, 55, 70]))

    def test_layer_spec_validation(self) -> None:
        with self.assertRaises(ValueError):
            LayerSpec(kind="ssd")
        with self.assertRaises(ValueError):
            LayerSpec(kind="yolo", anchors=())


class TestHierarchicalScoring(unittest.TestCase):
    def setUp(self) -> None:
        # animal -> {dog, cat}; vehicle
        self.tree = LabelTree(parent=(-1, -1, 0, 0), names=("animal", "vehicle", "dog", "cat"))
        self.probs = np.array([[0.9, 0.1, 0.6, 0.4]])
        self.obj = np.array([1.0])

    def test_descends_while_confident(self) -> None:
        ids, conf = HierarchicalScoring(self.tree, 0.5).score(self.obj, self.probs)
        self.assertEqual(int(ids[0]), 2)
        self.assertAlmostEqual(float(conf[0]), 0.54)

    def test_stops_at_coarse_label(self) -> None:
        ids, conf = HierarchicalScoring(self.tree, 0.6).score(self.obj, self.probs)
        self.assertEqual(int(ids[0]), 0)
        self.assertAlmostEqual(float(conf[0]), 0.9)

    def test_reports_best_top_level_when_nothing_qualifies(self) -> None:
        ids, conf = HierarchicalScoring(self.tree, 0.95).score(self.obj * 0.5, self.probs)
        self.assertEqual(int(ids[0]), 0)
        self.assertAlmostEqual(float(conf[0]), 0.45)

    def test_through_decoder_with_group_softmax(self) -> None:
        decoder = BoxDecoder(
            [LayerSpec(kind="flat", activated=False)], num_classes=4, scoring=HierarchicalScoring(self.tree, 0.5)
        )
        # logits: animal >> vehicle, dog >> cat
        row = np.array([[10, 10, 4, 4, 20.0, 8.0, -8.0, 6.0, -6.0]], dtype=np.float32)
        cands = decoder.decode([row], net_size=(32, 32), thresh=0.2)
        self.assertEqual(int(cands.class_ids[0]), 2)
        self.assertGreater(float(cands.scores[0]), 0.99)

    def test_tree_validation(self) -> None:
        with self.assertRaises(ValueError):
            LabelTree(parent=(0,))
        with self.assertRaises(ValueError):
            LabelTree(parent=(-1, 5))
        self.assertEqual(self.tree.children(-1), (0, 1))
        self.assertEqual(self.tree.children(0), (2, 3))
        self.assertEqual(self.tree.groups, ((0, 1), (2, 3)))

    def test_class_count_mismatch(self) -> None:
        with self.assertRaises(ValueError):
            HierarchicalScoring(self.tree).score(self.obj, np.zeros((1, 3)))


if __name__ == "__main__":
    unittest.main()
