"""Iterators that group single instances into batches and prefetch batches."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from .buffer import ThreadBuffer

_SHAPE = re.compile(r"\s*(\d+),\s*(\d+),\s*(\d+)")


@dataclass
class DataInst:
    """A single instance: its index, a (channel, height, width) array and its label."""

    index: int
    data: np.ndarray
    label: np.ndarray


@dataclass
class DataBatch:
    """A batch of instances with labels, instance indices and optional extra data."""

    data: np.ndarray
    label: np.ndarray
    inst_index: Optional[np.ndarray] = None
    batch_size: int = 0
    num_batch_padd: int = 0
    extra_data: list = field(default_factory=list)


def _alloc_batch(shape: tuple[int, int, int, int], label_width: int) -> DataBatch:
    return DataBatch(
        data=np.zeros(shape, dtype=np.float32),
        label=np.zeros((shape[0], label_width), dtype=np.float32),
        inst_index=np.zeros(shape[0], dtype=np.uint32),
        batch_size=shape[0],
    )


def _copy_batch(batch: DataBatch) -> DataBatch:
    return DataBatch(
        data=np.array(batch.data, copy=True),
        label=np.array(batch.label, copy=True),
        inst_index=None if batch.inst_index is None else np.array(batch.inst_index, copy=True),
        batch_size=batch.batch_size,
        num_batch_padd=batch.num_batch_padd,
        extra_data=[np.array(extra, copy=True) for extra in batch.extra_data],
    )


class BatchAdaptIterator:
    """Turns an iterator of :class:`DataInst` into an iterator of :class:`DataBatch`."""

    def __init__(self, base: Any) -> None:
        self.base = base
        self.batch_size = 0
        self.input_shape: Optional[tuple[int, int, int]] = None
        self.label_width = 1
        self.round_batch = 0
        self.silent = 0
        self.test_skipread = 0
        self._num_overflow = 0
        self._head = 1
        self._out: Optional[DataBatch] = None

    def set_param(self, name: str, val: str) -> None:
        self.base.set_param(name, val)
        if name == "batch_size":
            self.batch_size = int(val)
        elif name == "input_shape":
            match = _SHAPE.match(val)
            if match is None:
                raise ValueError(
                    "input_shape must be three consecutive integers without space "
                    "example: 1,1,200 "
                )
            self.input_shape = tuple(int(g) for g in match.groups())
        elif name == "label_width":
            self.label_width = int(val)
        elif name == "round_batch":
            self.round_batch = int(val)
        elif name == "silent":
            self.silent = int(val)
        elif name == "test_skipread":
            self.test_skipread = int(val)

    def init(self) -> None:
        self.base.init()
        if self.input_shape is None:
            raise ValueError("BatchAdaptIterator: input_shape must be set")
        if self.batch_size <= 0:
            raise ValueError("BatchAdaptIterator: batch_size must be positive")
        self._out = _alloc_batch((self.batch_size, *self.input_shape), self.label_width)

    def before_first(self) -> None:
        if self.round_batch == 0 or self._num_overflow == 0:
            self.base.before_first()
        else:
            # the base was already rewound while padding the last batch
            self._num_overflow = 0
        self._head = 1

    def next(self) -> bool:
        out = self._require_out()
        out.num_batch_padd = 0
        if self.test_skipread != 0 and self._head == 0:
            return True
        self._head = 0
        if self._num_overflow != 0:
            return False
        top = 0
        while self.base.next():
            self._store(top, self.base.value())
            top += 1
            if top >= self.batch_size:
                return True
        if top == 0:
            return False
        if self.round_batch != 0:
            self._num_overflow = 0
            self.base.before_first()
            for slot in range(top, self.batch_size):
                if not self.base.next():
                    raise RuntimeError("number of input must be bigger than batch size")
                self._store(slot, self.base.value())
                self._num_overflow += 1
            out.num_batch_padd = self._num_overflow
        else:
            out.num_batch_padd = self.batch_size - top
        return True

    def value(self) -> DataBatch:
        if self._head != 0:
            raise RuntimeError("must call Next to get value")
        return self._require_out()

    def _store(self, slot: int, inst: DataInst) -> None:
        out = self._require_out()
        label = np.asarray(inst.label, dtype=np.float32).reshape(-1)
        if label.size != out.label.shape[1]:
            raise ValueError("BatchAdaptIterator: label width mismatch")
        data = np.asarray(inst.data, dtype=np.float32)
        if data.shape != out.data.shape[1:]:
            raise ValueError("BatchAdaptIterator: instance shape does not match input_shape")
        out.label[slot] = label
        out.inst_index[slot] = inst.index
        out.data[slot] = data

    def _require_out(self) -> DataBatch:
        if self._out is None:
            raise RuntimeError("BatchAdaptIterator: init must be called first")
        return self._out


class _BatchFactory:
    """Feeds copies of the base iterator's batches to a :class:`ThreadBuffer`."""

    def __init__(self, base: Any) -> None:
        self.base = base

    def set_param(self, name: str, val: str) -> None:
        self.base.set_param(name, val)

    def init(self) -> bool:
        self.base.init()
        if not self.base.next():
            raise ValueError("ThreadBufferIterator: input can not be empty")
        self.base.before_first()
        return True

    def load_next(self) -> Optional[DataBatch]:
        if self.base.next():
            return _copy_batch(self.base.value())
        return None

    def before_first(self) -> None:
        self.base.before_first()

    def destroy(self) -> None:
        """Nothing to release."""


class ThreadBufferIterator:
    """Prefetches batches of a base iterator on a background thread."""

    def __init__(self, base: Any) -> None:
        self.silent = 0
        self._buffer = ThreadBuffer(_BatchFactory(base))
        self._buffer.set_param("buffer_size", "2")
        self._out: Optional[DataBatch] = None

    def set_param(self, name: str, val: str) -> None:
        if name == "silent":
            self.silent = int(val)
        self._buffer.set_param(name, val)

    def init(self) -> None:
        if not self._buffer.init():
            raise RuntimeError("iterator init fail")
        if self.silent == 0:
            print(f"ThreadBufferIterator: buffer_size={self._buffer.buffer_size}")

    def before_first(self) -> None:
        self._buffer.before_first()

    def next(self) -> bool:
        batch = self._buffer.next()
        if batch is None:
            return False
        self._out = batch
        return True

    def value(self) -> DataBatch:
        if self._out is None:
            raise RuntimeError("must call Next to get value")
        return self._out

    def close(self) -> None:
        """Stop the loader thread."""
        self._buffer.destroy()

    def __enter__(self) -> "ThreadBufferIterator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()