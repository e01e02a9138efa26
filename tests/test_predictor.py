import json

import numpy as np
import pandas as pd
import pytest

from frameboost.booster import FrameBoost
from frameboost.model import FrameBoostModel
from frameboost.predictor import FrameBoostPredictor, load_predictor

from conftest import FakeClock, FakeEngine, make_config, make_frame


def fit(frame, **overrides):
    engine = FakeEngine()
    booster = FrameBoost(make_config(**overrides), engine=engine, clock=FakeClock())
    return booster.train(frame, key="scored").model, engine


def test_unseen_levels_land_on_missing_indicator(frame):
    model, engine = fit(frame, ntrees=2)
    predictor = FrameBoostPredictor(model, engine)
    new = pd.DataFrame({"color": ["red", "green", None], "x1": [1.0, 2.0, np.nan], "x2": [0.0, -1.0, -2.0]})
    data = predictor.matrix(new)
    assert data.labels is None
    dense = data.matrix.to_array()
    assert dense.shape == (3, 5)
    np.testing.assert_array_equal(dense[:, :3], [[0, 1, 0], [0, 0, 1], [0, 0, 1]])
    assert np.isnan(dense[2, 3])


def test_predict_keeps_every_row(frame):
    model, engine = fit(frame, ntrees=2)
    predictor = FrameBoostPredictor(model, engine)
    preds = predictor.predict(frame.drop(columns=["response"]))
    # the fake engine adds 1 / (trees + 1) to a zero label
    np.testing.assert_allclose(preds, np.full(len(frame), 1 / 3), rtol=1e-6)
    assert len(engine.released) >= 1


def test_missing_feature_column_is_rejected(frame):
    model, engine = fit(frame, ntrees=1)
    with pytest.raises(KeyError):
        FrameBoostPredictor(model, engine).predict(frame.drop(columns=["x1"]))


def test_model_without_engine_state_is_rejected(frame):
    model, _ = fit(frame, ntrees=1)
    model.booster_bytes = None
    with pytest.raises(ValueError):
        FrameBoostPredictor(model, FakeEngine())


def test_json_round_trip(frame, tmp_path):
    model, engine = fit(frame, ntrees=3)
    path = tmp_path / "model.json"
    FrameBoostPredictor(model, engine).to_json(path)
    restored = FrameBoostPredictor.from_json(path, FakeEngine())
    assert restored.model.ntrees == 3
    assert restored.model.layout.feature_names == model.layout.feature_names
    np.testing.assert_allclose(restored.predict(frame), np.full(len(frame), 0.25), rtol=1e-6)

    again = load_predictor(json.loads(path.read_text()), FakeEngine())
    assert isinstance(again.model, FrameBoostModel)


def test_predict_labels_for_classifiers():
    frame = make_frame(40)
    frame["response"] = np.where(frame["x1"] > 1.5, "yes", "no")
    model, engine = fit(frame, ntrees=1)
    labels = FrameBoostPredictor(model, engine).predict_labels(frame)
    # constant 0.5 probabilities fall on the positive side of the threshold
    assert labels.tolist() == ["yes"] * 40

    frame["response"] = np.array(["a", "b", "c"])[np.arange(40) % 3]
    model, engine = fit(frame, ntrees=1)
    assert set(FrameBoostPredictor(model, engine).predict_labels(frame)) == {"a"}


def test_predict_labels_needs_classifier(frame):
    model, engine = fit(frame, ntrees=1)
    with pytest.raises(ValueError):
        FrameBoostPredictor(model, engine).predict_labels(frame)
