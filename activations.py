from dataclasses import dataclass
from typing import Tuple

import torch

from errors import EngineError


class TensorScope:
    """
    Tracks the tensors created for one step and drops every reference to
    them when the block exits, whether it exits normally or with an error.
    """
    def __init__(self):
        self._tensors = []
        self.closed = False

    def track(self, tensor):
        if self.closed:
            raise RuntimeError('TensorScope already released')
        self._tensors.append(tensor)
        return tensor

    def release(self):
        self._tensors.clear()
        self.closed = True

    def __len__(self):
        return len(self._tensors)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


@dataclass(frozen=True)
class ActivationSnapshot:
    layer_names: Tuple[str, ...]
    values: Tuple[float, ...]

    def __len__(self):
        return len(self.values)

    def __iter__(self):
        return iter(self.values)

    def __getitem__(self, index):
        return self.values[index]

    def as_dict(self):
        return dict(zip(self.layer_names, self.values))


class ActivationSampler:
    """Mean output of every probed layer for a single input."""

    def sample(self, probe, tensor):
        model = probe.model
        was_training = model.training
        model.eval()
        names, values = [], []
        try:
            with torch.no_grad(), TensorScope() as scope:
                batch = scope.track(tensor.unsqueeze(0) if tensor.dim() == 3 else tensor)
                if batch.shape[0] != 1:
                    raise EngineError(
                        f'Activation sampling expects a single item, got batch of {batch.shape[0]}')
                for name, out in probe.iter_outputs(batch):
                    names.append(name)
                    values.append(float(out.mean()))
                    del out
        except RuntimeError as e:
            raise EngineError(f'Activation sampling failed: {e}') from e
        finally:
            model.train(was_training)
        return ActivationSnapshot(tuple(names), tuple(values))
