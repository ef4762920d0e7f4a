"""Tests for the label -> images store and its serialization."""

import json

import pytest

from dataset_store import DatasetStore, decode_dataset
from errors import DatasetBusyError, DatasetFormatError, ValidationError


class TestSamples:
    def test_add_sample_creates_category(self):
        store = DatasetStore()
        store.add_sample('Cat', 'a')
        store.add_sample('Cat', 'b')
        store.add_sample('House', 'c')

        assert store.list_categories() == ['Cat', 'House']
        assert store.samples('Cat') == ('a', 'b')
        assert store.sample_count() == 3

    def test_empty_categories_are_not_listed(self):
        store = DatasetStore()
        store.add_category('Sol')
        store.add_sample('Cat', 'a')

        assert store.categories() == ['Sol', 'Cat']
        assert store.list_categories() == ['Cat']
        assert 'Sol' not in store.snapshot()

    def test_recent_returns_last_n(self):
        store = DatasetStore()
        for i in range(8):
            store.add_sample('Cat', str(i))

        assert store.recent('Cat', 3) == ['5', '6', '7']
        assert store.recent('Missing') == []

    def test_clear(self):
        store = DatasetStore({'Cat': ['a']})
        store.clear()
        assert store.list_categories() == []
        assert len(store) == 0

    def test_rejects_non_string_payload(self):
        store = DatasetStore()
        with pytest.raises(ValidationError):
            store.add_sample('Cat', b'raw')
        assert store.categories() == []


class TestSerialization:
    @pytest.mark.parametrize('mapping', [
        {},
        {'Cat': ['a', 'b'], 'House': ['c']},
        {'Gato "negro"': ['x'], 'Casa/ñ,日本': ['y', 'z'], 'Sol': []},
    ])
    def test_export_import_roundtrip(self, mapping):
        original = DatasetStore(mapping)
        restored = DatasetStore()
        restored.import_from(original.export_to())

        assert restored == original
        assert restored.categories() == original.categories()

    def test_malformed_import_keeps_existing(self):
        store = DatasetStore({'Cat': ['a']})

        for bad in ['not json', '[1, 2]', '{"Cat": "a"}', '{"Cat": [1]}']:
            with pytest.raises(DatasetFormatError):
                store.import_from(bad)

        assert store.samples('Cat') == ('a',)

    def test_format_error_is_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            decode_dataset('{')
        assert exc.value.stage == 'import'

    def test_save_and_load(self, tmp_path):
        store = DatasetStore({'Cat': ['a'], 'House': ['b', 'c']})
        path = tmp_path / 'nested' / 'dataset.json'
        store.save(path)

        assert json.loads(path.read_text(encoding='utf-8')) == {'Cat': ['a'], 'House': ['b', 'c']}
        assert DatasetStore.load(path) == store


class TestReadLock:
    def test_writes_rejected_while_reading(self):
        store = DatasetStore({'Cat': ['a']})
        with store.reading():
            assert store.busy
            with pytest.raises(DatasetBusyError):
                store.add_sample('Cat', 'b')
            with pytest.raises(DatasetBusyError):
                store.clear()
            with pytest.raises(DatasetBusyError):
                store.import_from('{}')

        assert not store.busy
        store.add_sample('Cat', 'b')
        assert store.sample_count('Cat') == 2
