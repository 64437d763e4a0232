import numpy as np
import pytest

from netkit.attach import AttachTxtIterator
from netkit.batching import DataBatch


class FakeBase:
    def __init__(self, index_batches):
        self.index_batches = index_batches
        self.params = []
        self.pos = -1
        self.initialised = False

    def set_param(self, name, val):
        self.params.append((name, val))

    def init(self):
        self.initialised = True

    def before_first(self):
        self.pos = -1

    def next(self):
        self.pos += 1
        return self.pos < len(self.index_batches)

    def value(self):
        idx = self.index_batches[self.pos]
        n = len(idx)
        return DataBatch(
            data=np.zeros((n, 1, 1, 2), dtype=np.float32),
            label=np.arange(n, dtype=np.float32).reshape(n, 1),
            inst_index=np.asarray(idx, dtype=np.uint32),
            batch_size=n,
        )


def _make(tmp_path, text, index_batches):
    path = tmp_path / "extra.txt"
    path.write_text(text)
    base = FakeBase(index_batches)
    it = AttachTxtIterator(base)
    it.set_param("filename", str(path))
    it.set_param("batch_size", str(len(index_batches[0])))
    it.init()
    it.before_first()
    return it, base


def test_params_pass_to_base(tmp_path):
    it, base = _make(tmp_path, "2\n5 1.0 2.0\n", [[5]])
    assert ("filename", str(tmp_path / "extra.txt")) in base.params
    assert ("batch_size", "1") in base.params
    assert base.initialised
    assert it.dim == 2


def test_extra_data_attached(tmp_path):
    it, _ = _make(tmp_path, "2\n5 1.5 2.5\n7 3.0 4.0\n", [[7, 5]])
    assert it.next()
    batch = it.value()
    assert len(batch.extra_data) == 1
    extra = batch.extra_data[0]
    assert extra.shape == (2, 1, 1, 2)
    np.testing.assert_allclose(extra[:, 0, 0, :], [[3.0, 4.0], [1.5, 2.5]])
    assert batch.label[:, 0].tolist() == [0.0, 1.0]
    assert not it.next()


def test_unknown_index_keeps_previous_row(tmp_path):
    it, _ = _make(tmp_path, "1\n1 9.0\n2 8.0\n", [[1, 2], [3, 1]])
    assert it.next()
    assert it.next()
    extra = it.value().extra_data[0]
    # row 0 has no record for index 3, so it keeps the value from the first batch
    np.testing.assert_allclose(extra[:, 0, 0, 0], [9.0, 9.0])


def test_rewind_passes_through(tmp_path):
    it, _ = _make(tmp_path, "1\n4 2.0\n", [[4]])
    assert it.next()
    assert not it.next()
    it.before_first()
    assert it.next()
    assert it.value().inst_index.tolist() == [4]


def test_dimension_mismatch_raises(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("3\n1 1.0 2.0\n")
    it = AttachTxtIterator(FakeBase([[1]]))
    it.set_param("filename", str(path))
    it.set_param("batch_size", "1")
    with pytest.raises(ValueError, match="do not match dimension"):
        it.init()


def test_missing_dim_raises(tmp_path):
    path = tmp_path / "empty.txt"
    path.write_text("")
    it = AttachTxtIterator(FakeBase([[1]]))
    it.set_param("filename", str(path))
    with pytest.raises(ValueError, match="data dim"):
        it.init()


def test_missing_file_raises(tmp_path):
    it = AttachTxtIterator(FakeBase([[1]]))
    it.set_param("filename", str(tmp_path / "nope.txt"))
    with pytest.raises(FileNotFoundError, match="Open file failed"):
        it.init()


def test_value_before_next_raises(tmp_path):
    it, _ = _make(tmp_path, "1\n1 1.0\n", [[1]])
    with pytest.raises(RuntimeError):
        it.value()