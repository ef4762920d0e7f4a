import logging
import sys

from dataset_store import DatasetStore
from errors import DecodeError
from preprocess import load_image

logger = logging.getLogger(__name__)


def clean_dataset(store):
    """Drop every sample that does not decode as an image. Returns (checked, removed)."""
    total = 0
    removed = 0
    kept = {}
    for category in store.categories():
        kept[category] = []
        for payload in store.samples(category):
            total += 1
            try:
                load_image(payload)
            except DecodeError as e:
                logger.warning('Removing bad image from %r: %s', category, e.message)
                removed += 1
                continue
            kept[category].append(payload)

    if removed:
        store.replace(kept)
    logger.info('Checked %d images, removed %d bad images.', total, removed)
    return total, removed


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    path = sys.argv[1] if len(sys.argv) > 1 else 'dataset.json'
    store = DatasetStore.load(path)
    clean_dataset(store)
    store.save(path)
