import numpy as np
import pandas as pd
import pytest

from frameboost.data import ColumnarFrame, RowSelection, ensure_frame, extract_labels_weights
from frameboost.errors import InternalConsistencyError


def test_numeric_and_categorical_columns():
    frame = ColumnarFrame.from_pandas(
        pd.DataFrame({"x": [0.0, 1.5, np.nan, 0.0], "c": ["b", "a", None, "a"]})
    )
    x, c = frame.column("x"), frame.column("c")
    assert not x.is_categorical
    assert c.is_categorical
    assert c.levels == ("a", "b")
    np.testing.assert_array_equal(c.read(), np.array([1, 0, -1, 0], dtype=np.int32))
    np.testing.assert_array_equal(c.read_float(), np.array([1.0, 0.0, np.nan, 0.0]))
    assert x.na_count() == 1
    assert c.na_count() == 1
    # missing values count as stored non-zero entries
    assert x.nonzero_count() == 2
    assert c.nonzero_count() == 2


def test_int_and_binary_detection():
    frame = ColumnarFrame.from_dict({"b": [0.0, 1.0, np.nan], "i": [3.0, -2.0, 0.0], "q": [0.5, 1.0, 2.0]})
    assert frame.column("b").is_binary()
    assert frame.column("i").is_int() and not frame.column("i").is_binary()
    assert not frame.column("q").is_int()


def test_frame_rejects_ragged_and_duplicate_columns():
    col = ColumnarFrame.from_dict({"a": [1.0, 2.0]}).column("a")
    short = ColumnarFrame.from_dict({"b": [1.0]}).column("b")
    with pytest.raises(ValueError):
        ColumnarFrame([col, short])
    with pytest.raises(ValueError):
        ColumnarFrame([col, col])
    with pytest.raises(KeyError):
        ColumnarFrame([col]).column("missing")


def test_frame_chunks_cover_all_rows():
    frame = ColumnarFrame.from_dict({"a": np.arange(10.0)}, chunk_size=4)
    assert list(frame.chunks()) == [(0, 4), (4, 8), (8, 10)]
    assert ensure_frame(frame) is frame
    assert ensure_frame(pd.DataFrame({"a": [1.0]})).num_rows == 1


def test_row_selection_drops_zero_weights_and_empty_chunks():
    weights = np.array([1.0, 0.0, 0.0, 0.0, 2.0, 1.0, 0.0, 0.5])
    frame = ColumnarFrame.from_dict({"w": weights}, chunk_size=2)
    selection = RowSelection.from_frame(frame, "w")
    assert selection.count == 4
    np.testing.assert_array_equal(selection.indices(), np.array([0, 4, 5, 7]))
    chunks = [(start, stop, None if mask is None else mask.tolist()) for start, stop, mask in selection.chunks(frame)]
    assert chunks == [(0, 2, [True, False]), (4, 6, None), (6, 8, [False, True])]


def test_row_selection_without_weights_keeps_everything():
    frame = ColumnarFrame.from_dict({"a": np.arange(5.0)})
    selection = RowSelection.from_frame(frame, None)
    assert selection.count == 5
    assert selection.keep is None
    with pytest.raises(ValueError):
        list(selection.chunks(ColumnarFrame.from_dict({"a": [1.0]})))


def test_labels_and_weights_follow_row_selection():
    frame = ColumnarFrame.from_dict(
        {"y": [10.0, 11.0, 12.0, 13.0, 14.0], "w": [1.0, 0.0, 3.0, 0.0, 5.0]}, chunk_size=2
    )
    selection = RowSelection.from_frame(frame, "w")
    labels, weights = extract_labels_weights(frame, selection, "y", "w", expected_rows=3)
    np.testing.assert_array_equal(labels, np.array([10.0, 12.0, 14.0], dtype=np.float32))
    np.testing.assert_array_equal(weights, np.array([1.0, 3.0, 5.0], dtype=np.float32))
    assert labels.shape == weights.shape


def test_label_count_mismatch_is_internal_error():
    frame = ColumnarFrame.from_dict({"y": [1.0, 2.0, 3.0]})
    selection = RowSelection.from_frame(frame, None)
    with pytest.raises(InternalConsistencyError):
        extract_labels_weights(frame, selection, "y", None, expected_rows=2)
    with pytest.raises(AssertionError):
        extract_labels_weights(frame, selection, "y", None, expected_rows=4)


def test_categorical_labels_are_remapped_to_training_levels():
    frame = ColumnarFrame.from_dict({"y": ["no", "yes", "maybe"]})
    selection = RowSelection.all_rows(frame)
    labels, weights = extract_labels_weights(
        frame, selection, "y", None, expected_rows=3, response_levels=("no", "yes")
    )
    assert weights is None
    np.testing.assert_array_equal(labels, np.array([0.0, 1.0, np.nan], dtype=np.float32))
