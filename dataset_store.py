# dataset_store.py
import json
import logging
from contextlib import contextmanager
from pathlib import Path

from errors import DatasetBusyError, DatasetFormatError, ValidationError
from settings import PREVIEW_COUNT

logger = logging.getLogger(__name__)


def decode_dataset(serialized):
    """Parse an exported dataset into a {label: [payload, ...]} dict.

    Raises DatasetFormatError if the text is not JSON or does not map
    string labels to lists of string payloads.
    """
    try:
        obj = json.loads(serialized)
    except (TypeError, ValueError) as e:
        raise DatasetFormatError(f'Could not parse dataset: {e}') from e

    if not isinstance(obj, dict):
        raise DatasetFormatError(
            f'Dataset must be an object of label -> images, got {type(obj).__name__}')
    mapping = {}
    for label, samples in obj.items():
        if not isinstance(samples, list):
            raise DatasetFormatError(f'Category {label!r} must hold a list of images')
        for s in samples:
            if not isinstance(s, str):
                raise DatasetFormatError(f'Category {label!r} holds a non-string image')
        mapping[label] = list(samples)
    return mapping


class DatasetStore:
    """Label -> captured image payloads, in order of first appearance."""

    def __init__(self, mapping=None):
        self._data = {}
        self._readers = 0
        if mapping:
            for label, samples in mapping.items():
                self._data[label] = list(samples)

    # --- reads ---------------------------------------------------------

    def categories(self):
        """Every registered category, including ones without samples."""
        return list(self._data)

    def list_categories(self):
        return [c for c, samples in self._data.items() if samples]

    def samples(self, category):
        return tuple(self._data.get(category, ()))

    def sample_count(self, category=None):
        if category is None:
            return sum(len(s) for s in self._data.values())
        return len(self._data.get(category, ()))

    def recent(self, category, n=PREVIEW_COUNT):
        samples = self._data.get(category, [])
        return list(samples[-n:]) if n > 0 else []

    def snapshot(self):
        """Copy of the non-empty part of the mapping, used to build a training run."""
        return {c: tuple(s) for c, s in self._data.items() if s}

    def __len__(self):
        return len(self._data)

    def __eq__(self, other):
        if not isinstance(other, DatasetStore):
            return NotImplemented
        return self._data == other._data

    # --- writes --------------------------------------------------------

    @contextmanager
    def reading(self):
        """Hold the store read-only while a training run uses it."""
        self._readers += 1
        try:
            yield self
        finally:
            self._readers -= 1

    @property
    def busy(self):
        return self._readers > 0

    def _check_writable(self):
        if self._readers:
            raise DatasetBusyError()

    def add_category(self, category):
        self._check_writable()
        if not isinstance(category, str) or not category:
            raise ValidationError('Category name must be a non-empty string')
        self._data.setdefault(category, [])

    def add_sample(self, category, payload):
        if not isinstance(payload, str):
            raise ValidationError(
                f'Image payload must be a string, got {type(payload).__name__}')
        self.add_category(category)
        self._data[category].append(payload)

    def replace(self, mapping):
        self._check_writable()
        self._data = {label: list(samples) for label, samples in mapping.items()}

    def clear(self):
        self._check_writable()
        self._data = {}
        logger.info('Dataset cleared')

    # --- serialization -------------------------------------------------

    def export_to(self):
        return json.dumps(self._data, ensure_ascii=False)

    def import_from(self, serialized):
        self._check_writable()
        mapping = decode_dataset(serialized)
        self._data = mapping
        logger.info('Imported dataset with %d categories, %d images',
                    len(mapping), self.sample_count())

    def save(self, path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.export_to(), encoding='utf-8')

    @classmethod
    def load(cls, path):
        path = Path(path)
        return cls(decode_dataset(path.read_text(encoding='utf-8')))
