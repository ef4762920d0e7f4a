import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial

import torch
import torch.nn.functional as F
from torch.utils.data import DataLoader, TensorDataset
from tqdm import tqdm

from activations import ActivationSampler, ActivationSnapshot, TensorScope
from animator import VisualizationAnimator
from errors import (
    ClassifierError, ConfigError, DecodeError, EngineError,
    InsufficientCategoriesError, TrainingAlreadyInProgressError,
)
from model import ModelBuilder, TrainedClassifier
from preprocess import Preprocessor
from settings import TrainingConfig

logger = logging.getLogger(__name__)


class TrainingState(Enum):
    IDLE = 'idle'
    VALIDATING = 'validating'
    BUILDING_TENSORS = 'building_tensors'
    TRAINING = 'training'
    COMPLETED = 'completed'
    FAILED = 'failed'


ACTIVE_STATES = (TrainingState.VALIDATING, TrainingState.BUILDING_TENSORS, TrainingState.TRAINING)


@dataclass(frozen=True)
class TrainingProgress:
    epoch: int
    loss: float
    accuracy: float


@dataclass(frozen=True)
class EpochEvent:
    progress: TrainingProgress
    activations: ActivationSnapshot
    total_epochs: int


def fit(model, inputs, targets, epochs, batch_size, shuffle=True, on_epoch_end=None,
        progress_bar=True, generator=None):
    """
    Train a compiled SmallCNN on (inputs, one-hot targets).
    on_epoch_end(epoch_index, logs) is called after every epoch with
    logs = {'loss': ..., 'accuracy': ...} averaged over the samples.
    """
    loader = DataLoader(TensorDataset(inputs, targets), batch_size=batch_size,
                        shuffle=shuffle, num_workers=0, generator=generator)
    history = []
    for epoch in range(epochs):
        model.train()
        total_loss, correct, seen = 0.0, 0, 0
        pbar = tqdm(loader, desc=f'Epoch {epoch+1}/{epochs} (train)',
                    disable=not progress_bar, leave=False)
        for imgs, labels in pbar:
            preds = model(imgs)
            loss = model.loss_fn(preds, labels)
            model.optimizer.zero_grad()
            loss.backward()
            model.optimizer.step()

            n = imgs.shape[0]
            total_loss += loss.item() * n
            correct += (preds.argmax(dim=1) == labels.argmax(dim=1)).sum().item()
            seen += n
            pbar.set_postfix(loss=loss.item())

        logs = {'loss': total_loss / seen, 'accuracy': correct / seen}
        history.append(logs)
        if on_epoch_end is not None:
            on_epoch_end(epoch, logs)
    return history


class TrainingOrchestrator:
    """
    Runs one training job at a time over a DatasetStore:
    validate -> build tensors -> train -> install the trained classifier.

    After every epoch the progress log is appended, activations of the
    first sample are published to the listeners and the animator walks the
    layers once before the next epoch starts.
    """
    def __init__(self, store, config=None, preprocessor=None, builder=None,
                 sampler=None, animator=None, pump=None):
        self.config = (config or TrainingConfig()).validate()
        self.store = store
        self.preprocessor = preprocessor or Preprocessor(self.config.image_size)
        self.builder = builder or ModelBuilder(self.config.image_size, self.config.learning_rate)
        if self.preprocessor.size != self.builder.image_size:
            raise ConfigError(
                f'Preprocessor size {self.preprocessor.size} does not match '
                f'model input size {self.builder.image_size}')
        self.sampler = sampler or ActivationSampler()
        self.pump = pump
        self.animator = animator or VisualizationAnimator(pump=pump)

        self.state = TrainingState.IDLE
        self.progress = []
        self.classifier = None
        self.last_activations = None
        self.last_error = None
        self._listeners = []

    def add_listener(self, callback):
        """callback(EpochEvent) runs after each epoch, before the animation pass."""
        self._listeners.append(callback)

    @property
    def in_progress(self):
        return self.state in ACTIVE_STATES

    def _set_state(self, state):
        logger.debug('Training state %s -> %s', self.state.value, state.value)
        self.state = state

    def start(self):
        if self.in_progress:
            raise TrainingAlreadyInProgressError()

        previous = self.state
        self._set_state(TrainingState.VALIDATING)
        categories = self.store.list_categories()
        if len(categories) < 2:
            self.state = previous
            raise InsufficientCategoriesError(len(categories))

        self.progress = []
        self.last_error = None
        logger.info('Training on %d categories: %s', len(categories), ', '.join(categories))
        try:
            classifier = self._run()
        except ClassifierError as e:
            self._fail(e)
            raise
        except (RuntimeError, ValueError) as e:
            err = EngineError(f'Training failed: {e}', stage=self.state.value)
            self._fail(err)
            raise err from e
        except BaseException as e:
            # listeners run inside the epoch loop and may raise anything
            self._fail(e)
            raise

        # swap in one step so the old classifier stays usable until now
        self.classifier = classifier
        self._set_state(TrainingState.COMPLETED)
        last = self.progress[-1]
        logger.info('Training finished. loss=%.4f accuracy=%.4f', last.loss, last.accuracy)
        return classifier

    def _fail(self, error):
        logger.error('Training failed while %s: %s', self.state.value, error)
        self.last_error = error
        self._set_state(TrainingState.FAILED)

    def _run(self):
        generator = None
        if self.config.seed is not None:
            torch.manual_seed(self.config.seed)
            generator = torch.Generator().manual_seed(self.config.seed)

        with self.store.reading(), TensorScope() as scope:
            self._set_state(TrainingState.BUILDING_TENSORS)
            inputs, targets, categories = self.build_tensors(scope)

            self._set_state(TrainingState.TRAINING)
            model, probe = self.builder.build(len(categories))
            representative = scope.track(inputs[0])
            fit(model, inputs, targets,
                epochs=self.config.epochs,
                batch_size=self.config.batch_size,
                shuffle=self.config.shuffle,
                on_epoch_end=partial(self._on_epoch_end, probe, representative),
                progress_bar=self.config.progress_bar,
                generator=generator)
            model.eval()
            del inputs, targets, representative
        return TrainedClassifier(model, probe, tuple(categories))

    def build_tensors(self, scope):
        """
        Encode every sample, in category order, into a batch and one-hot targets.
        Returns (inputs, targets, categories); the category order fixes the
        output unit order of the model trained on them.
        """
        snapshot = self.store.snapshot()
        categories = list(snapshot)
        xs, ys = [], []
        for index, category in enumerate(categories):
            for i, payload in enumerate(snapshot[category]):
                try:
                    xs.append(scope.track(self.preprocessor.encode(payload)))
                except DecodeError as e:
                    raise DecodeError(
                        f'Image {i} of {category!r}: {e.message}',
                        stage=TrainingState.BUILDING_TENSORS.value) from e
                ys.append(index)

        inputs = scope.track(torch.stack(xs))
        labels = scope.track(torch.tensor(ys, dtype=torch.long))
        targets = scope.track(F.one_hot(labels, num_classes=len(categories)).float())
        xs.clear()
        logger.info('Built %d training tensors of shape %s', inputs.shape[0], tuple(inputs.shape[1:]))
        return inputs, targets, categories

    def _on_epoch_end(self, probe, representative, epoch, logs):
        progress = TrainingProgress(epoch + 1, float(logs['loss']), float(logs['accuracy']))
        self.progress.append(progress)
        logger.info('Epoch %d/%d loss=%.4f accuracy=%.4f',
                    progress.epoch, self.config.epochs, progress.loss, progress.accuracy)

        activations = self.sampler.sample(probe, representative)
        self.last_activations = activations
        event = EpochEvent(progress, activations, self.config.epochs)
        for callback in self._listeners:
            callback(event)

        self.animator.begin(probe.layer_names)
        self.animator.step_through(self.config.layer_delay)
        if self.pump is not None:
            self.pump()
