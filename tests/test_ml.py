"""Unit tests for ML scoring: thresholds, backends and model retrieval."""

from __future__ import annotations

import importlib.util
import math
import tempfile
import unittest
from pathlib import Path

from hftrigger import EMPTY, FAILED_SCORES, CallableBackend, ModelLoadError, ModelProvider, Scorer, SelectionBits, TrackState
from hftrigger.bits import OriginType
from hftrigger.config import BdtThresholds
from hftrigger.errors import InferenceError
from hftrigger.ml import TorchScriptBackend, build_features, feature_names, input_shape_from_metadata, is_bdt_selected


class TestBdtClassification(unittest.TestCase):
    """Validate the mapping from three scores to origin bits."""

    def setUp(self) -> None:
        self.thresholds = BdtThresholds(bkg=0.5, prompt=0.5, nonprompt=0.5)

    def test_background_score_vetoes(self) -> None:
        """A background score above threshold clears every origin bit."""
        self.assertEqual(is_bdt_selected((0.9, 0.99, 0.99), self.thresholds), EMPTY)

    def test_prompt_and_nonprompt_are_independent(self) -> None:
        """Prompt and non-prompt bits are decided separately."""
        self.assertEqual(is_bdt_selected((0.1, 0.8, 0.1), self.thresholds), SelectionBits.of(OriginType.PROMPT))
        self.assertEqual(
            is_bdt_selected((0.1, 0.8, 0.8), self.thresholds),
            SelectionBits.of(OriginType.PROMPT, OriginType.NON_PROMPT),
        )
        self.assertEqual(is_bdt_selected((0.1, 0.1, 0.8), self.thresholds), SelectionBits.of(OriginType.NON_PROMPT))

    def test_malformed_scores_fail_closed(self) -> None:
        """Empty, short, failed and NaN score vectors select nothing."""
        self.assertEqual(is_bdt_selected((), self.thresholds), EMPTY)
        self.assertEqual(is_bdt_selected((0.1, 0.9), self.thresholds), EMPTY)
        self.assertEqual(is_bdt_selected(FAILED_SCORES, self.thresholds), EMPTY)
        self.assertEqual(is_bdt_selected((math.nan, 0.9, 0.9), self.thresholds), EMPTY)
        self.assertEqual(is_bdt_selected((0.1, math.nan, 0.9), self.thresholds), EMPTY)


class TestScorer(unittest.TestCase):
    """Validate scorer wrapping, error handling and model retrieval."""

    def test_callable_backend_scores(self) -> None:
        """A callable backend returns its three scores as floats."""
        scorer = Scorer.load(CallableBackend(lambda features: [0.1, 0.2, 0.7]), "D0.pt")
        self.assertEqual(scorer.name, "D0")
        self.assertEqual(scorer.predict([0.0] * 14), (0.1, 0.2, 0.7))

    def test_wrong_output_size_becomes_failed_scores(self) -> None:
        """Two scores raise on `predict` and are logged by `predict_scores`."""
        scorer = Scorer.load(CallableBackend(lambda features: [0.1, 0.9]), "D0.pt")
        with self.assertRaises(InferenceError):
            scorer.predict([0.0] * 14)
        with self.assertLogs("hftrigger.ml", level="ERROR"):
            self.assertEqual(scorer.predict_scores([0.0] * 14), FAILED_SCORES)

    def test_failing_callable_becomes_failed_scores(self) -> None:
        """Exceptions raised by the model surface as failed scores."""

        def broken(features):
            raise ValueError("bad input")

        scorer = Scorer.load(CallableBackend(broken), "D0.pt")
        with self.assertLogs("hftrigger.ml", level="ERROR"):
            self.assertEqual(scorer.predict_scores([0.0] * 14), FAILED_SCORES)

    def test_runtime_error_becomes_failed_scores(self) -> None:
        """Runtime errors from the inference library never escape `predict_scores`."""

        def broken(features):
            raise RuntimeError("Invalid input shape")

        scorer = Scorer.load(CallableBackend(broken), "D0.pt")
        with self.assertRaises(InferenceError):
            scorer.predict([0.0] * 14)
        with self.assertLogs("hftrigger.ml", level="ERROR"):
            self.assertEqual(scorer.predict_scores([0.0] * 14), FAILED_SCORES)

    def test_non_numeric_scores_become_failed_scores(self) -> None:
        """Scores that are not numbers are an inference error."""
        scorer = Scorer.load(CallableBackend(lambda features: ["nan?", "x", "y"]), "D0.pt")
        with self.assertRaises(InferenceError):
            scorer.predict([0.0] * 14)
        with self.assertLogs("hftrigger.ml", level="ERROR"):
            self.assertEqual(scorer.predict_scores([0.0] * 14), FAILED_SCORES)

    def test_callable_backend_without_callable(self) -> None:
        """Loading fails when no callable is configured."""
        with self.assertRaises(ModelLoadError):
            CallableBackend().load("D0.pt", {})
        handle = CallableBackend().load("D0.pt", {"callable": len})
        self.assertIs(handle, len)

    def test_model_provider_paths_and_missing_file(self) -> None:
        """Timestamped models live in a per-particle directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            provider = ModelProvider(tmpdir, backend=CallableBackend(lambda features: [0.0, 1.0, 0.0]))
            self.assertEqual(provider.model_path("D0"), Path(tmpdir) / "D0.pt")
            self.assertEqual(provider.model_path("D0", 0), Path(tmpdir) / "D0.pt")
            self.assertEqual(provider.model_path("Ds", 1234), Path(tmpdir) / "Ds" / "1234.pt")

            with self.assertRaises(ModelLoadError):
                provider.retrieve("D0")

            (Path(tmpdir) / "D0.pt").write_bytes(b"")
            scorer = provider.retrieve("D0")
            self.assertEqual(scorer.name, "D0")
            self.assertEqual(scorer.predict([0.0] * 14), (0.0, 1.0, 0.0))

    def test_negative_input_shape_is_fixed(self) -> None:
        """A negative batch dimension is replaced by 1 with a warning."""
        with self.assertLogs("hftrigger.ml", level="WARNING"):
            self.assertEqual(input_shape_from_metadata({"input_shape": [-1, 14]}, "D0"), (1, 14))
        self.assertEqual(input_shape_from_metadata({}), ())

    @unittest.skipUnless(importlib.util.find_spec("torch"), "torch not installed")
    def test_torchscript_backend_round_trip(self) -> None:
        """A traced model is loaded from disk and returns three probabilities."""
        import torch

        model = torch.nn.Sequential(torch.nn.Linear(14, 3), torch.nn.Softmax(dim=1))
        traced = torch.jit.trace(model, torch.zeros(1, 14))
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "D0.pt"
            traced.save(str(path))
            scorer = Scorer.load(TorchScriptBackend(), path, {"input_shape": [1, 14]})
            scores = scorer.predict([0.5] * 14)
        self.assertEqual(len(scores), 3)
        self.assertAlmostEqual(sum(scores), 1.0, places=5)

    @unittest.skipUnless(importlib.util.find_spec("torch"), "torch not installed")
    def test_torchscript_non_tensor_output_becomes_failed_scores(self) -> None:
        """A model returning something other than a tensor fails closed."""
        import torch

        class DictOutput(torch.nn.Module):
            def forward(self, x):
                return {"scores": x[:, :3]}

        scripted = torch.jit.script(DictOutput())
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "D0.pt"
            scripted.save(str(path))
            scorer = Scorer.load(TorchScriptBackend(), path, {"input_shape": [1, 14]})
            with self.assertRaises(InferenceError):
                scorer.predict([0.5] * 14)
            with self.assertLogs("hftrigger.ml", level="ERROR"):
                self.assertEqual(scorer.predict_scores([0.5] * 14), FAILED_SCORES)

    @unittest.skipUnless(importlib.util.find_spec("torch"), "torch not installed")
    def test_torchscript_backend_missing_file(self) -> None:
        """A missing model file is a load error."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ModelLoadError):
                TorchScriptBackend().load(Path(tmpdir) / "missing.pt", {})


class TestFeatures(unittest.TestCase):
    """Validate feature-vector layout."""

    @staticmethod
    def _track(index: int) -> TrackState:
        return TrackState(index=index, px=1.0, py=1.0, pz=0.0, dca_xy=0.01 * index)

    def test_feature_lengths(self) -> None:
        """2-prong vectors hold 7 values per prong, 3-prong vectors 9."""
        two = build_features([self._track(0), self._track(1)])
        three = build_features([self._track(0), self._track(1), self._track(2)])
        self.assertEqual(two.shape, (14,))
        self.assertEqual(three.shape, (27,))
        self.assertEqual(len(feature_names(2)), 14)
        self.assertEqual(feature_names(3)[0], "pT1")
        self.assertAlmostEqual(float(two[0]), math.sqrt(2.0), places=5)
        self.assertAlmostEqual(float(two[8]), 0.01, places=5)

    def test_unsupported_prong_count(self) -> None:
        """Only 2- and 3-prong candidates have a feature layout."""
        with self.assertRaises(ValueError):
            build_features([self._track(0)])


if __name__ == "__main__":
    unittest.main()
