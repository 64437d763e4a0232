"""Network structure configuration: nodes, layers and their settings."""
from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field
from typing import BinaryIO, Mapping, Sequence

_PARAM_FORMAT = "<2i3I2i31i"
_PARAM_SIZE = struct.calcsize(_PARAM_FORMAT)
_INVALID = "NetConfig: invalid model file"

_LABEL_VEC = re.compile(r"label_vec\[\s*(\d+),\s*(\d+)")
_THREE_INTS = re.compile(r"\s*([+-]?\d+),\s*([+-]?\d+),\s*([+-]?\d+)")
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_EXTRA_SHAPE = re.compile(r"extra_data_shape\[\s*([+-]?\d+)")
_LAYER_INC = re.compile(r"layer\[\+\s*([+-]?\d+)")
_LAYER_INC_TAG = re.compile(r"layer\[\+1:([^\]]+)")
_LAYER_EDGE = re.compile(r"layer\[([^-]+)->([^\]]+)")
_SHAPE_ERROR = ("input_shape must be three consecutive integers without space "
                "example: 1,1,200 ")


@dataclass
class NetParam:
    """Generic model parameters saved with the network structure."""

    num_nodes: int = 0
    num_layers: int = 0
    input_shape: tuple[int, int, int] = (0, 0, 0)
    init_end: int = 0
    extra_data_num: int = 0
    reserved: list[int] = field(default_factory=lambda: [0] * 31)

    def pack(self) -> bytes:
        """Serialise to the fixed-size binary header."""
        return struct.pack(_PARAM_FORMAT, self.num_nodes, self.num_layers,
                           *self.input_shape, self.init_end, self.extra_data_num,
                           *self.reserved)

    @classmethod
    def unpack(cls, raw: bytes) -> "NetParam":
        """Parse the fixed-size binary header."""
        values = struct.unpack(_PARAM_FORMAT, raw)
        return cls(num_nodes=values[0], num_layers=values[1],
                   input_shape=tuple(values[2:5]), init_end=values[5],
                   extra_data_num=values[6], reserved=list(values[7:]))


@dataclass
class LayerInfo:
    """Type, name and connectivity of one layer."""

    type: int = 0
    primary_layer_index: int = -1
    name: str = ""
    nindex_in: list[int] = field(default_factory=list)
    nindex_out: list[int] = field(default_factory=list)


def _read_exact(fi: BinaryIO, size: int) -> bytes:
    raw = fi.read(size)
    if len(raw) != size:
        raise ValueError(_INVALID)
    return raw


def _write_ints(fo: BinaryIO, values: Sequence[int]) -> None:
    fo.write(struct.pack("<Q", len(values)))
    fo.write(struct.pack(f"<{len(values)}i", *values))


def _read_ints(fi: BinaryIO) -> list[int]:
    (count,) = struct.unpack("<Q", _read_exact(fi, 8))
    return list(struct.unpack(f"<{count}i", _read_exact(fi, 4 * count)))


def _write_str(fo: BinaryIO, text: str) -> None:
    raw = text.encode("utf-8")
    fo.write(struct.pack("<Q", len(raw)))
    fo.write(raw)


def _read_str(fi: BinaryIO) -> str:
    (count,) = struct.unpack("<Q", _read_exact(fi, 8))
    return _read_exact(fi, count).decode("utf-8")


class NetConfig:
    """Records the structure of a network and the settings of each layer.

    ``layer_types`` maps layer type names to type codes; ``shared_type`` is
    the code of a layer that shares the weights of an earlier named layer.
    """

    def __init__(self, layer_types: Mapping[str, int], shared_type: int) -> None:
        self.layer_types = dict(layer_types)
        self.shared_type = shared_type
        self.param = NetParam()
        self.layers: list[LayerInfo] = []
        self.node_names: list[str] = []
        self.node_name_map: dict[str, int] = {}
        self.layer_name_map: dict[str, int] = {}
        self.updater_type = "sgd"
        self.sync_type = "simple"
        self.label_name_map: dict[str, int] = {"label": 0}
        self.label_range: list[tuple[int, int]] = [(0, 1)]
        self.defcfg: list[tuple[str, str]] = []
        self.layercfg: list[list[tuple[str, str]]] = []
        self.extra_shape: list[int] = []

    def save_net(self, fo: BinaryIO) -> None:
        """Write the network structure (not the training settings)."""
        if self.param.num_layers != len(self.layers):
            raise ValueError("model inconsistent")
        if self.param.num_nodes != len(self.node_names):
            raise ValueError("num_nodes is inconsistent with node_names")
        fo.write(self.param.pack())
        if self.param.extra_data_num != 0:
            _write_ints(fo, self.extra_shape)
        for name in self.node_names:
            _write_str(fo, name)
        for info in self.layers:
            fo.write(struct.pack("<ii", info.type, info.primary_layer_index))
            _write_str(fo, info.name)
            _write_ints(fo, info.nindex_in)
            _write_ints(fo, info.nindex_out)

    def load_net(self, fi: BinaryIO) -> None:
        """Read a network structure written by :meth:`save_net`."""
        self.param = NetParam.unpack(_read_exact(fi, _PARAM_SIZE))
        if self.param.extra_data_num != 0:
            self.extra_shape = _read_ints(fi)
        self.node_names = [_read_str(fi) for _ in range(self.param.num_nodes)]
        self.node_name_map = {name: i for i, name in enumerate(self.node_names)}
        self.layers = []
        self.layercfg = [[] for _ in range(self.param.num_layers)]
        self.layer_name_map = {}
        for index in range(self.param.num_layers):
            ltype, primary = struct.unpack("<ii", _read_exact(fi, 8))
            info = LayerInfo(type=ltype, primary_layer_index=primary,
                             name=_read_str(fi), nindex_in=_read_ints(fi),
                             nindex_out=_read_ints(fi))
            if info.type == self.shared_type:
                if info.name:
                    raise ValueError("SharedLayer must not have name")
            elif info.name:
                if info.name in self.layer_name_map:
                    raise ValueError("NetConfig: invalid model file, duplicated "
                                     f"layer name: {info.name}")
                self.layer_name_map[info.name] = index
            self.layers.append(info)
        self._clear_config()

    def set_global_param(self, name: str, val: str) -> None:
        """Apply a setting that concerns the whole network."""
        if name == "updater":
            self.updater_type = val
        if name == "sync":
            self.sync_type = val
        match = _LABEL_VEC.match(name)
        if match is not None:
            self.label_range.append((int(match.group(1)), int(match.group(2))))
            self.label_name_map[val] = len(self.label_range) - 1

    def configure(self, cfg: Sequence[tuple[str, str]]) -> None:
        """Read (name, value) settings, building or checking the network structure."""
        self._clear_config()
        if not self.node_names and not self.node_name_map:
            self.node_names.append("in")
            self.node_name_map["in"] = 0
        self.node_name_map["0"] = 0
        netcfg_mode = 0
        top_node = 0
        layer_index = 0
        for name, val in cfg:
            if name == "extra_data_num":
                match = _LEADING_INT.match(val)
                if match is None:
                    raise ValueError("extra_data_num must be an integer")
                num = int(match.group(1))
                for i in range(num):
                    node = f"in_{i + 1}"
                    if node not in self.node_name_map:
                        self.node_names.append(node)
                        self.node_name_map[node] = i + 1
                self.param.extra_data_num = num
            if name.startswith("extra_data_shape["):
                shape = _THREE_INTS.match(val)
                if _EXTRA_SHAPE.match(name) is None or shape is None:
                    raise ValueError("extra data shape config incorrect")
                self.extra_shape.extend(int(g) for g in shape.groups())
            if self.param.init_end == 0 and name == "input_shape":
                shape = _THREE_INTS.match(val)
                if shape is None or any(int(g) < 0 for g in shape.groups()):
                    raise ValueError(_SHAPE_ERROR)
                self.param.input_shape = tuple(int(g) for g in shape.groups())
            if netcfg_mode != 2:
                self.set_global_param(name, val)
            if name == "netconfig" and val == "start":
                netcfg_mode = 1
            if name == "netconfig" and val == "end":
                netcfg_mode = 0
            if name.startswith("layer["):
                info = self._layer_info(name, val, top_node, layer_index)
                netcfg_mode = 2
                if self.param.init_end == 0:
                    if len(self.layers) != layer_index:
                        raise ValueError("NetConfig inconsistent")
                    self.layers.append(info)
                    self.layercfg.extend([] for _ in range(len(self.layers) - len(self.layercfg)))
                else:
                    if layer_index >= len(self.layers):
                        raise ValueError("config layer index exceed bound")
                    if info != self.layers[layer_index]:
                        raise ValueError("config setting does not match existing "
                                         "network structure")
                top_node = info.nindex_out[0] if len(info.nindex_out) == 1 else -1
                layer_index += 1
                continue
            if netcfg_mode == 2:
                if self.layers[layer_index - 1].type == self.shared_type:
                    raise ValueError("please do not set parameters in shared layer, "
                                     "set them in primary layer")
                self.layercfg[layer_index - 1].append((name, val))
            else:
                self.defcfg.append((name, val))
        if self.param.init_end == 0:
            self._init_net()

    def get_layer_index(self, name: str) -> int:
        """Index of the layer with the given name."""
        try:
            return self.layer_name_map[name]
        except KeyError:
            raise ValueError(f"unknown layer name {name}") from None

    def _layer_type(self, name: str) -> int:
        if name in self.layer_types:
            return self.layer_types[name]
        base = name.split("[", 1)[0]
        if base in self.layer_types:
            return self.layer_types[base]
        raise ValueError(f"unknown layer type: {name}")

    def _layer_info(self, name: str, val: str, top_node: int,
                    layer_index: int) -> LayerInfo:
        info = LayerInfo()
        inc = _LAYER_INC.match(name)
        edge = _LAYER_EDGE.match(name)
        if inc is not None:
            if top_node < 0:
                raise ValueError("ConfigError: layer[+1] is used, but last layer have "
                                 "more than one output use "
                                 "layer[input-name->output-name] instead")
            info.nindex_in.append(top_node)
            tagged = _LAYER_INC_TAG.match(name)
            if tagged is not None:
                info.nindex_out.append(self._node_index(tagged.group(1), True))
            elif int(inc.group(1)) == 0:
                info.nindex_out.append(top_node)
            else:
                info.nindex_out.append(self._node_index(f"!node-after-{top_node}", True))
        elif edge is not None:
            info.nindex_in = self._parse_nodes(edge.group(1), False)
            info.nindex_out = self._parse_nodes(edge.group(2), True)
        else:
            raise ValueError(f"ConfigError: invalid layer format {name}")

        ltype, sep, rest = val.partition(":")
        tokens = rest.split()
        layer_name = ""
        if ltype and sep and tokens:
            info.type = self._layer_type(ltype)
            layer_name = tokens[0]
        else:
            info.type = self._layer_type(val)

        if info.type == self.shared_type:
            start = ltype.find("[")
            if start < 0:
                raise ValueError("ConfigError: shared layer must specify tag of "
                                 "layer to share with")
            s_tag = ltype[start + 1:][:-1]
            if s_tag not in self.layer_name_map:
                raise ValueError(f"ConfigError: shared layer tag {s_tag} is not "
                                 "defined before")
            info.primary_layer_index = self.layer_name_map[s_tag]
        elif layer_name:
            if layer_name in self.layer_name_map:
                if self.layer_name_map[layer_name] != layer_index:
                    raise ValueError("ConfigError: layer name in the configuration "
                                     "file do not match the name stored in model")
            else:
                self.layer_name_map[layer_name] = layer_index
            info.name = layer_name
        return info

    def _parse_nodes(self, nodes: str, alloc_unknown: bool) -> list[int]:
        return [self._node_index(part, alloc_unknown)
                for part in nodes.split(",") if part]

    def _node_index(self, name: str, alloc_unknown: bool) -> int:
        if name in self.node_name_map:
            return self.node_name_map[name]
        if not alloc_unknown:
            raise ValueError(f"ConfigError: undefined node name {name}, input node of "
                             "a layer must be specified as output of another layer "
                             "presented before the layer declaration")
        index = len(self.node_names)
        self.node_name_map[name] = index
        self.node_names.append(name)
        return index

    def _init_net(self) -> None:
        self.param.num_layers = len(self.layers)
        self.param.num_nodes = max(
            (index + 1 for info in self.layers
             for index in (*info.nindex_in, *info.nindex_out)),
            default=0,
        )
        if self.param.num_nodes != len(self.node_names):
            raise ValueError("num_nodes is inconsistent with node_names")
        self.param.init_end = 1

    def _clear_config(self) -> None:
        self.defcfg.clear()
        for entry in self.layercfg:
            entry.clear()