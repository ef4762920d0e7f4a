import numpy as np
import pytest
from PIL import Image

from dataset_store import DatasetStore
from preprocess import image_to_payload
from settings import TrainingConfig


def solid_payload(color, size=(24, 20), fmt='PNG'):
    return image_to_payload(Image.new('RGB', size, color), fmt=fmt)


def noisy_payload(base, seed, size=(24, 24)):
    rng = np.random.default_rng(seed)
    arr = np.clip(np.array(base, dtype=np.int16) + rng.integers(-30, 30, size=size + (3,)), 0, 255)
    return image_to_payload(Image.fromarray(arr.astype(np.uint8)), fmt='PNG')


@pytest.fixture
def fast_config():
    return TrainingConfig(image_size=16, epochs=3, batch_size=4, layer_delay=0.0,
                          progress_bar=False, seed=0)


@pytest.fixture
def cat_house_store():
    store = DatasetStore()
    store.add_sample('Cat', noisy_payload((220, 40, 40), 1))
    store.add_sample('Cat', noisy_payload((200, 60, 30), 2))
    store.add_sample('House', noisy_payload((30, 50, 210), 3))
    return store


@pytest.fixture
def solid():
    return solid_payload


@pytest.fixture
def noisy():
    return noisy_payload
