# errors.py
"""Error types raised by the dataset, training and inference modules.

Every error carries the ``stage`` it was raised in so the front end can
tell the operator which step failed.
"""


class ClassifierError(Exception):
    stage = 'unknown'

    def __init__(self, message, stage=None):
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage

    def __str__(self):
        return f'[{self.stage}] {self.message}'


class ValidationError(ClassifierError):
    stage = 'validating'


class InsufficientCategoriesError(ValidationError):
    def __init__(self, found, required=2):
        super().__init__(
            f'At least {required} categories with images are needed, found {found}.')
        self.found = found
        self.required = required


class DatasetFormatError(ValidationError):
    stage = 'import'


class DatasetBusyError(ValidationError):
    stage = 'dataset'

    def __init__(self, message='Dataset is being read by a training run.'):
        super().__init__(message)


class DecodeError(ClassifierError):
    stage = 'decode'


class ConfigError(ClassifierError):
    stage = 'config'


class EngineError(ClassifierError):
    stage = 'engine'


class ModelNotTrainedError(ClassifierError):
    stage = 'predict'

    def __init__(self, message='Train the model first.'):
        super().__init__(message)


class TrainingAlreadyInProgressError(ClassifierError):
    stage = 'training'

    def __init__(self, message='A training run is already in progress.'):
        super().__init__(message)


class CaptureError(ClassifierError):
    stage = 'capture'
