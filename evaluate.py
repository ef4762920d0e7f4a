# evaluation of a trained classifier against the stored captures
from dataclasses import dataclass

import numpy as np
import torch
from sklearn.metrics import accuracy_score, classification_report, confusion_matrix
from tqdm import tqdm

from activations import TensorScope
from errors import ModelNotTrainedError, ValidationError
from preprocess import Preprocessor


@dataclass
class EvaluationReport:
    accuracy: float
    report: str
    confusion: np.ndarray
    total_samples: int


def evaluate(classifier, store, preprocessor=None, batch_size=32, progress_bar=False):
    if classifier is None:
        raise ModelNotTrainedError()
    preprocessor = preprocessor or Preprocessor(classifier.model.image_size)
    categories = list(classifier.categories)

    # categories added after training have no output unit and are skipped
    items = [(payload, index)
             for index, category in enumerate(categories)
             for payload in store.samples(category)]
    if not items:
        raise ValidationError('No stored images for the trained categories', stage='evaluate')

    model = classifier.model
    model.eval()
    ys, yps = [], []
    with torch.no_grad():
        for start in tqdm(range(0, len(items), batch_size), disable=not progress_bar):
            chunk = items[start:start + batch_size]
            with TensorScope() as scope:
                imgs = scope.track(torch.stack([preprocessor.encode(p) for p, _ in chunk]))
                preds = scope.track(model(imgs))
                yps.extend(preds.argmax(dim=1).tolist())
            ys.extend(label for _, label in chunk)

    labels = list(range(len(categories)))
    return EvaluationReport(
        accuracy=float(accuracy_score(ys, yps)),
        report=classification_report(ys, yps, labels=labels, target_names=categories,
                                     zero_division=0),
        confusion=confusion_matrix(ys, yps, labels=labels),
        total_samples=len(ys),
    )
