from collections import OrderedDict
from dataclasses import dataclass
from typing import Tuple

import torch
import torch.nn as nn

from errors import ConfigError
from settings import CHANNELS, IMAGE_SIZE, LR, MIN_IMAGE_SIZE

LAYER_NAMES = ('conv1', 'pool1', 'conv2', 'pool2', 'flatten', 'dense', 'output')


def categorical_crossentropy(probs, targets, eps=1e-7):
    """Mean cross-entropy between softmax outputs and one-hot targets."""
    probs = probs.clamp(eps, 1.0 - eps)
    return -(targets * probs.log()).sum(dim=1).mean()


def _conv_pool_side(size):
    # unpadded 3x3 conv then 2x2 pool, twice
    for _ in range(2):
        size = (size - 2) // 2
    return size


class SmallCNN(nn.Module):
    def __init__(self, n_classes, image_size=IMAGE_SIZE, channels=CHANNELS):
        super().__init__()
        side = _conv_pool_side(image_size)
        self.n_classes = n_classes
        self.image_size = image_size
        self.stages = nn.Sequential(OrderedDict([
            ('conv1', nn.Sequential(nn.Conv2d(channels, 16, kernel_size=3), nn.ReLU())),
            ('pool1', nn.MaxPool2d(2)),
            ('conv2', nn.Sequential(nn.Conv2d(16, 32, kernel_size=3), nn.ReLU())),
            ('pool2', nn.MaxPool2d(2)),
            ('flatten', nn.Flatten()),
            ('dense', nn.Sequential(nn.Linear(32 * side * side, 64), nn.ReLU())),
            ('output', nn.Sequential(nn.Linear(64, n_classes), nn.Softmax(dim=1))),
        ]))
        self.optimizer = None
        self.loss_fn = None
        self.metrics = ()

    def forward(self, x):
        return self.stages(x)


class ProbeView:
    """
    Read-only view of a SmallCNN returning the output of every stage.
    Used for activation sampling only, never for training.
    """
    def __init__(self, model: SmallCNN):
        self.model = model

    @property
    def layer_names(self):
        return tuple(name for name, _ in self.model.stages.named_children())

    def __len__(self):
        return len(self.model.stages)

    def iter_outputs(self, x):
        for name, stage in self.model.stages.named_children():
            x = stage(x)
            yield name, x

    def __call__(self, x):
        return list(self.iter_outputs(x))


@dataclass(frozen=True)
class TrainedClassifier:
    """A model, its probe view and the category order it was trained with.

    The three always travel together so predictions are labelled with the
    categories the output units were trained on.
    """
    model: SmallCNN
    probe: ProbeView
    categories: Tuple[str, ...]

    @property
    def num_classes(self):
        return len(self.categories)


class ModelBuilder:
    def __init__(self, image_size=IMAGE_SIZE, learning_rate=LR, channels=CHANNELS):
        if image_size < MIN_IMAGE_SIZE:
            raise ConfigError(f'Image size must be at least {MIN_IMAGE_SIZE}, got {image_size}')
        self.image_size = image_size
        self.learning_rate = learning_rate
        self.channels = channels

    def build(self, n_classes):
        if n_classes < 2:
            raise ConfigError(f'A classifier needs at least 2 classes, got {n_classes}')
        model = SmallCNN(n_classes, image_size=self.image_size, channels=self.channels)
        self.compile(model)
        return model, ProbeView(model)

    def compile(self, model):
        model.optimizer = torch.optim.Adam(model.parameters(), lr=self.learning_rate)
        model.loss_fn = categorical_crossentropy
        model.metrics = ('accuracy',)
        return model
