# settings.py
from dataclasses import dataclass
from typing import Optional

from errors import ConfigError

# Hyperparameters you can tune
IMAGE_SIZE = 64
CHANNELS = 3
BATCH_SIZE = 16
EPOCHS = 15
LR = 1e-3

# Seconds each layer stays highlighted during an animation pass
LAYER_DELAY = 0.15
INFERENCE_LAYER_DELAY = 0.25

# How many recent captures to show per category
PREVIEW_COUNT = 6

DEFAULT_CATEGORIES = ('Gato', 'Casa', 'Sol')

# Smallest side that keeps a non-empty grid after conv/pool/conv/pool
MIN_IMAGE_SIZE = 10


@dataclass
class TrainingConfig:
    """Configuration for a training run."""
    image_size: int = IMAGE_SIZE
    batch_size: int = BATCH_SIZE
    epochs: int = EPOCHS
    learning_rate: float = LR
    shuffle: bool = True
    layer_delay: float = LAYER_DELAY

    # Optional settings
    seed: Optional[int] = None
    progress_bar: bool = True

    def validate(self):
        if self.image_size < MIN_IMAGE_SIZE:
            raise ConfigError(
                f'image_size must be at least {MIN_IMAGE_SIZE}, got {self.image_size}')
        if self.batch_size < 1:
            raise ConfigError(f'batch_size must be positive, got {self.batch_size}')
        if self.epochs < 1:
            raise ConfigError(f'epochs must be positive, got {self.epochs}')
        if self.learning_rate <= 0:
            raise ConfigError(f'learning_rate must be positive, got {self.learning_rate}')
        if self.layer_delay < 0:
            raise ConfigError(f'layer_delay cannot be negative, got {self.layer_delay}')
        return self
