# netkit

Helpers for training small neural networks, written on top of numpy.
netkit gives you an SGD updater, evaluation metrics, data iterators that
read and batch training data, and a parser for network structure
configuration.

Batches are 4-D `float32` arrays in `(batch, channel, height, width)` order.
Labels are 2-D arrays in `(batch, label_width)` order.

## Modules

### `netkit.updater`

- `SGDUpdater(weight, grad, tag)` implements SGD with momentum. It updates `weight` in place.
  - Parameters are set as strings through `set_param(name, val)`:
    - `learning_rate` (default 0.01)
    - `momentum` (default 0.9)
    - `wd`, the weight decay (default 0)
    - `clip_gradient` (default 0, which means no clipping)
    - `silent`
  - `init()` allocates the momentum buffer. Unless `silent` is set, it prints the learning rate and the momentum.
  - `update(epoch)` uses the accumulated `grad` and then resets `grad` to zero.
  - `update(epoch, grad2d)` uses an explicit gradient. Its shape must be the weight's shape flattened to 2-D.
  - `start_round(round)` records the current round.
  - `apply_visitor(visitor)` calls `visitor.visit(tag, weight, grad)`.
- `clip(values, bound)` clips values to `[-bound, bound]` and turns NaN into 0.
- `encode_data_key(layer_index, tag)` encodes a layer index and a weight tag into one key. The tag must be `"wmat"` or `"bias"`.
- `decode_tag(key)` recovers the tag from a key.

### `netkit.metric`

The metrics are:

- `RMSEMetric` (`rmse`): the sum of squared differences per instance.
- `ErrorMetric` (`error`): the error of the arg-max prediction. If there is a single score, the prediction is the class `score > 0`.
- `LoglossMetric` (`logloss`): the multi-class or binary log loss.
- `RecallMetric` (`rec@n`): the fraction of labels found among the top `n` scores. Ties are broken by a seeded shuffle.

Each metric averages its per-instance value over every row added with `add_eval(predscore, labels)`. `get()` returns NaN until something has been added.

`create_metric(name)` builds a metric from its name. It returns `None` for an unknown name.

`MetricSet` evaluates several metrics, each against a named label field.

### Data iterators

The iterators share one protocol: `set_param(name, val)`, `init()`, `before_first()`, `next()` (which returns `True` while there is a batch) and `value()`.

- `netkit.batching`:
  - `DataInst` is a single instance and `DataBatch` is a batch.
  - `BatchAdaptIterator(base)` groups the `DataInst` values of a base iterator into `DataBatch` values. It takes these parameters:
    - `batch_size`
    - `input_shape` as `c,h,w`
    - `label_width`
    - `round_batch`: pad the last batch by wrapping around to the start.
    - `silent`
    - `test_skipread`
  - In a short final batch, `num_batch_padd` counts the padded rows.
  - `ThreadBufferIterator(base)` prefetches copies of a batch iterator's batches on a background thread. The default buffer size is 2. Call `close()` to stop the thread, or use the iterator as a context manager.
- `netkit.mnist.MNISTIterator` reads gzip-compressed MNIST idx files. It takes these parameters:
  - `path_img` and `path_label`
  - `batch_size`
  - `input_flat`: with 1, images are `(1, 1, rows*cols)`; otherwise `(1, rows, cols)`.
  - `shuffle` and `seed_data`
  - `index_offset`
  - `silent`

  Pixels are scaled by 1/256. Only full batches are returned.
- `netkit.attach.AttachTxtIterator(base)` adds a `(batch, 1, 1, dim)` array to each batch's `extra_data`. It takes the parameters `filename`, `batch_size` and `round_batch`.
  - The text file starts with `dim`. After it come records of an instance index followed by `dim` values.
  - A row whose instance index has no record keeps its previous values.

### `netkit.buffer`

`ThreadBuffer(factory, buffer_size=30)` is a double buffer. A loader thread fills one half from the factory while you read the other half.

The factory provides `set_param`, `init`, `load_next` (which returns `None` at the end), `before_first` and `destroy`.

`next()` returns the next element, or `None` at the end. The buffer is also iterable. Call `destroy()` to stop the thread.

### `netkit.netconfig`

`NetConfig(layer_types, shared_type)` builds a network structure from `(name, value)` configuration pairs.

- `layer_types` maps layer type names to integer codes.
- `shared_type` is the code of a layer that shares the weights of an earlier named layer, written as `share[tag]`.

`configure(cfg)` understands these settings:

- `layer[+1]`, `layer[+1:node]`, `layer[+0]` and `layer[a,b->c]` declare layers. The value is `type` or `type:name`.
- `input_shape`
- `extra_data_num` and `extra_data_shape[i]`
- `netconfig = start/end`
- `updater` and `sync`
- `label_vec[a,b)`

Settings that follow a layer declaration go to that layer's list in `layercfg`. All other settings go to `defcfg`.

`save_net(fo)` and `load_net(fi)` write and read the structure to and from binary files. The training settings are not included.

`get_layer_index(name)` looks up a named layer.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
import numpy as np
from netkit.metric import MetricSet

metrics = MetricSet()
metrics.add_metric("error")
metrics.add_eval(
    [np.array([[0.1, 0.9], [0.8, 0.2]])],
    {"label": np.array([[1], [1]])},
)
print(metrics.print("test"))   # "\ttest-error:0.5"
```

```python
import numpy as np
from netkit.updater import SGDUpdater

w = np.zeros((4, 3), dtype=np.float32)
dw = np.ones_like(w)
sgd = SGDUpdater(w, dw, "wmat")
sgd.set_param("learning_rate", "0.1")
sgd.set_param("silent", "1")
sgd.init()
sgd.update(0)   # w is now -0.1 everywhere, dw is reset to 0
```

```python
from netkit.netconfig import NetConfig

cfg = NetConfig({"fullc": 1, "relu": 2, "share": 3}, shared_type=3)
cfg.configure([
    ("input_shape", "1,1,784"),
    ("netconfig", "start"),
    ("layer[+1:fc1]", "fullc:fc1"),
    ("nhidden", "100"),
    ("layer[+1]", "relu"),
    ("netconfig", "end"),
])
cfg.get_layer_index("fc1")   # 0
cfg.layercfg[0]              # [("nhidden", "100")]
```

## What netkit does not do

netkit has no layers and no forward or backward pass. It does not train or evaluate a whole network, and it has no command-line program.

`NetConfig` only records the structure and the settings of a network. Building and running the layers it describes is left to the caller.