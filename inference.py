# inference.py
import logging

import torch

from activations import ActivationSampler, TensorScope
from animator import VisualizationAnimator
from errors import ConfigError, EngineError, ModelNotTrainedError
from preprocess import Preprocessor
from settings import INFERENCE_LAYER_DELAY

logger = logging.getLogger(__name__)

# The inference animation walks a condensed view of the network
INFERENCE_LAYERS = ('input', 'hidden', 'output')


class PredictionPipeline:
    """
    Classify one capture with a trained classifier.
    predict() returns ([(label, prob), ...] sorted by prob descending,
    ActivationSnapshot). The labels are the categories frozen in the
    classifier at training time, never the live dataset's.
    """
    def __init__(self, preprocessor=None, sampler=None, animator=None,
                 layer_names=INFERENCE_LAYERS, layer_delay=INFERENCE_LAYER_DELAY, pump=None):
        self.preprocessor = preprocessor or Preprocessor()
        self.sampler = sampler or ActivationSampler()
        self.animator = animator or VisualizationAnimator(pump=pump)
        self.layer_names = tuple(layer_names)
        self.layer_delay = layer_delay

    def predict(self, capture, classifier):
        if classifier is None:
            raise ModelNotTrainedError()
        if classifier.model.image_size != self.preprocessor.size:
            raise ConfigError(
                f'Classifier expects {classifier.model.image_size}px images, '
                f'preprocessor produces {self.preprocessor.size}px', stage='predict')

        with TensorScope() as scope:
            tensor = scope.track(self.preprocessor.encode(capture))
            batch = scope.track(tensor.unsqueeze(0))
            activations = self.sampler.sample(classifier.probe, batch)

            self.animator.begin(self.layer_names)
            self.animator.step_through(self.layer_delay)

            model = classifier.model
            model.eval()
            try:
                with torch.no_grad():
                    probs = scope.track(model(batch))[0].tolist()
            except RuntimeError as e:
                raise EngineError(f'Error during model forward: {e}', stage='predict') from e

        if len(probs) != len(classifier.categories):
            raise EngineError(
                f'Model has {len(probs)} outputs but {len(classifier.categories)} categories',
                stage='predict')
        prediction = sorted(zip(classifier.categories, probs), key=lambda p: p[1], reverse=True)
        logger.info('Prediction: %s (%.2f%%)', prediction[0][0], prediction[0][1] * 100)
        return prediction, activations
