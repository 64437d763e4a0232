import numpy as np
import pytest

from netkit.batching import BatchAdaptIterator, DataInst, ThreadBufferIterator


def _insts(n, shape=(1, 2, 2), label_width=1):
    return [
        DataInst(
            index=i,
            data=np.full(shape, float(i), dtype=np.float32),
            label=np.full(label_width, float(i), dtype=np.float32),
        )
        for i in range(n)
    ]


class _ListIter:
    def __init__(self, insts):
        self.insts = insts
        self.params = []
        self.pos = -1
        self.inited = False

    def set_param(self, name, val):
        self.params.append((name, val))

    def init(self):
        self.inited = True

    def before_first(self):
        self.pos = -1

    def next(self):
        self.pos += 1
        return self.pos < len(self.insts)

    def value(self):
        return self.insts[self.pos]


def _make(n, batch, label_width=1, **params):
    base = _ListIter(_insts(n, label_width=label_width))
    it = BatchAdaptIterator(base)
    it.set_param("batch_size", str(batch))
    it.set_param("input_shape", "1,2,2")
    it.set_param("label_width", str(label_width))
    for name, val in params.items():
        it.set_param(name, val)
    it.init()
    it.before_first()
    return it, base


def _drain(it):
    out = []
    while it.next():
        batch = it.value()
        out.append((batch.inst_index.tolist(), batch.num_batch_padd))
    return out


def test_params_are_forwarded_and_base_initialised():
    it, base = _make(3, 2)
    assert ("batch_size", "2") in base.params
    assert ("input_shape", "1,2,2") in base.params
    assert base.inited


def test_batches_in_order_with_padding():
    it, _ = _make(5, 2)
    batches = _drain(it)
    assert len(batches) == 3
    assert batches[0] == ([0, 1], 0)
    assert batches[1] == ([2, 3], 0)
    assert batches[2][0][0] == 4
    assert batches[2][1] == 1


def test_batch_content_copied():
    it, _ = _make(4, 2)
    assert it.next()
    batch = it.value()
    assert batch.data.shape == (2, 1, 2, 2)
    assert np.all(batch.data[1] == 1.0)
    np.testing.assert_array_equal(batch.label[:, 0], [0.0, 1.0])


def test_label_width():
    it, _ = _make(2, 2, label_width=2)
    assert it.next()
    assert it.value().label.shape == (2, 2)
    np.testing.assert_array_equal(it.value().label[1], [1.0, 1.0])


def test_round_batch_wraps_and_resumes():
    it, _ = _make(5, 2, round_batch="1")
    batches = _drain(it)
    assert batches[2] == ([4, 0], 1)
    assert not it.next()
    it.before_first()
    assert it.next()
    assert it.value().inst_index.tolist() == [1, 2]


def test_round_batch_too_few_inputs():
    it, _ = _make(1, 3, round_batch="1")
    with pytest.raises(RuntimeError):
        it.next()


def test_value_before_next_raises():
    it, _ = _make(3, 2)
    with pytest.raises(RuntimeError):
        it.value()


def test_invalid_input_shape():
    it = BatchAdaptIterator(_ListIter([]))
    with pytest.raises(ValueError):
        it.set_param("input_shape", "1 2 3")


def test_skipread_repeats_first_batch():
    it, _ = _make(3, 2, test_skipread="1")
    assert it.next()
    first = it.value().inst_index.tolist()
    for _ in range(5):
        assert it.next()
    assert it.value().inst_index.tolist() == first


def test_shape_mismatch_raises():
    base = _ListIter(_insts(2, shape=(1, 3, 3)))
    it = BatchAdaptIterator(base)
    it.set_param("batch_size", "2")
    it.set_param("input_shape", "1,2,2")
    it.init()
    it.before_first()
    with pytest.raises(ValueError):
        it.next()


def _buffered(n, batch=1, buffer_size=None):
    inner, base = _make(n, batch)
    tb = ThreadBufferIterator(inner)
    tb.set_param("silent", "1")
    if buffer_size is not None:
        tb.set_param("buffer_size", buffer_size)
    tb.init()
    return tb, base


def _drain_buffered(tb):
    out = []
    while tb.next():
        out.append(tb.value().inst_index.tolist()[0])
    return out


def test_thread_buffer_yields_all_batches():
    tb, base = _buffered(5)
    with tb:
        tb.before_first()
        assert _drain_buffered(tb) == [0, 1, 2, 3, 4]
    assert ("buffer_size", "2") in base.params


def test_thread_buffer_rewinds():
    tb, _ = _buffered(5, buffer_size="3")
    with tb:
        tb.before_first()
        first = _drain_buffered(tb)
        tb.before_first()
        second = _drain_buffered(tb)
    assert first == second
    assert len(first) == 5


def test_thread_buffer_values_are_independent_copies():
    tb, _ = _buffered(4)
    with tb:
        tb.before_first()
        batches = []
        while tb.next():
            batches.append(tb.value())
    assert [float(b.data[0, 0, 0, 0]) for b in batches] == [0.0, 1.0, 2.0, 3.0]


def test_thread_buffer_empty_input():
    inner, _ = _make(0, 1)
    tb = ThreadBufferIterator(inner)
    tb.set_param("silent", "1")
    with pytest.raises(ValueError, match="can not be empty"):
        tb.init()


def test_thread_buffer_value_before_next():
    tb, _ = _buffered(2)
    with tb:
        with pytest.raises(RuntimeError):
            tb.value()