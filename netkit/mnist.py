"""Iterator over the MNIST image and label files (gzip-compressed idx format)."""
from __future__ import annotations

import gzip
import random
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np

from .batching import DataBatch

_RAND_MAGIC = 0


@dataclass
class _Reader:
    """Sequential reader over the decompressed contents of a file."""

    raw: bytes
    pos: int = 0

    def read(self, size: int) -> bytes:
        chunk = self.raw[self.pos:self.pos + size]
        if len(chunk) != size:
            raise ValueError("Failed to read an int" if size == 4
                             else "MNISTIterator: unexpected end of file")
        self.pos += size
        return chunk

    def read_int(self) -> int:
        (value,) = struct.unpack(">i", self.read(4))
        return value


def _open(path: Union[str, Path]) -> _Reader:
    with gzip.open(path, "rb") as fi:
        return _Reader(fi.read())


def _load_images(path: Union[str, Path]) -> np.ndarray:
    reader = _open(path)
    reader.read_int()  # magic number
    count = reader.read_int()
    rows = reader.read_int()
    cols = reader.read_int()
    if count < 0 or rows < 0 or cols < 0:
        raise ValueError("MNISTIterator: invalid image header")
    pixels = np.frombuffer(reader.read(count * rows * cols), dtype=np.uint8)
    images = pixels.astype(np.float32).reshape(count, rows, cols)
    # normalise to [0, 1)
    images *= np.float32(1.0 / 256.0)
    return images


def _load_labels(path: Union[str, Path]) -> np.ndarray:
    reader = _open(path)
    reader.read_int()  # magic number
    count = reader.read_int()
    if count < 0:
        raise ValueError("MNISTIterator: invalid label header")
    return np.frombuffer(reader.read(count), dtype=np.uint8).astype(np.float32)


class MNISTIterator:
    """Yields fixed-size batches of MNIST images with their labels."""

    def __init__(self) -> None:
        self.silent = 0
        self.batch_size = 0
        self.input_flat = 1
        self.shuffle = 0
        self.index_offset = 0
        self.path_img = ""
        self.path_label = ""
        self._rng = random.Random(_RAND_MAGIC)
        self._images = np.zeros((0, 0, 0), dtype=np.float32)
        self._labels = np.zeros(0, dtype=np.float32)
        self._inst = np.zeros(0, dtype=np.uint32)
        self._shape: tuple[int, int, int, int] = (0, 1, 1, 0)
        self._loc = 0
        self._out: Optional[DataBatch] = None

    def set_param(self, name: str, val: str) -> None:
        if name == "silent":
            self.silent = int(val)
        elif name == "batch_size":
            self.batch_size = int(val)
        elif name == "input_flat":
            self.input_flat = int(val)
        elif name == "shuffle":
            self.shuffle = int(val)
        elif name == "index_offset":
            self.index_offset = int(val)
        elif name == "path_img":
            self.path_img = val
        elif name == "path_label":
            self.path_label = val
        elif name == "seed_data":
            self._rng.seed(_RAND_MAGIC + int(val))

    def init(self) -> None:
        """Load the images and labels into memory."""
        if self.batch_size <= 0:
            raise ValueError("MNISTIterator: batch_size must be positive")
        self._images = _load_images(self.path_img)
        self._labels = _load_labels(self.path_label)
        if len(self._labels) != len(self._images):
            raise ValueError("MNISTIterator: number of images and labels differ")
        self._inst = np.arange(len(self._labels), dtype=np.uint32) + np.uint32(self.index_offset)
        _, rows, cols = self._images.shape
        if self.input_flat == 1:
            self._shape = (self.batch_size, 1, 1, rows * cols)
        else:
            self._shape = (self.batch_size, 1, rows, cols)
        if self.shuffle:
            self._shuffle()
        self._loc = 0
        if self.silent == 0:
            s = self._shape
            print(f"MNISTIterator: load {len(self._images)} images, shuffle={self.shuffle}, "
                  f"shape={s[0]},{s[1]},{s[2]},{s[3]}")

    def before_first(self) -> None:
        self._loc = 0

    def next(self) -> bool:
        """Advance to the next full batch; False when too few images remain."""
        end = self._loc + self.batch_size
        if end > len(self._images):
            return False
        self._out = DataBatch(
            data=self._images[self._loc:end].reshape(self._shape),
            label=self._labels[self._loc:end].reshape(self.batch_size, 1),
            inst_index=self._inst[self._loc:end],
            batch_size=self.batch_size,
        )
        self._loc = end
        return True

    def value(self) -> DataBatch:
        if self._out is None:
            raise RuntimeError("must call Next to get value")
        return self._out

    def _shuffle(self) -> None:
        order = list(self._inst)
        self._rng.shuffle(order)
        self._inst = np.asarray(order, dtype=np.uint32)
        source = (self._inst - np.uint32(self.index_offset)).astype(np.int64)
        self._images = self._images[source].copy()
        self._labels = self._labels[source].copy()