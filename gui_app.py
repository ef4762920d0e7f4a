# gui_app.py
import os

# Force software OpenGL to reduce DLL/init conflicts on some Windows systems
os.environ.setdefault('QT_OPENGL', 'software')

import argparse
import logging
import sys

from PyQt5.QtCore import Qt, QTimer
from PyQt5.QtGui import QImage, QPixmap
from PyQt5.QtWidgets import (
    QApplication, QComboBox, QFileDialog, QHBoxLayout, QInputDialog, QLabel,
    QListWidget, QMessageBox, QPushButton, QVBoxLayout, QWidget
)

from capture_dataset import WebcamCapture
from dataset_store import DatasetStore
from errors import CaptureError, ClassifierError, ConfigError
from inference import PredictionPipeline
from preprocess import load_image
from settings import DEFAULT_CATEGORIES, PREVIEW_COUNT, TrainingConfig
from train import TrainingOrchestrator

logger = logging.getLogger(__name__)

IDLE_STYLE = 'background: #eee; border: 1px solid #333; padding: 4px;'
ACTIVE_STYLE = 'background: #ffa; border: 1px solid #333; padding: 4px; font-weight: bold;'


def pil2pixmap(img):
    img = img.convert('RGB')
    w, h = img.size
    data = img.tobytes('raw', 'RGB')
    qimg = QImage(data, w, h, 3 * w, QImage.Format_RGB888)
    # copy() so the pixels outlive the Python buffer
    return QPixmap.fromImage(qimg.copy())


def rgb2pixmap(frame):
    h, w, _ = frame.shape
    qimg = QImage(frame.tobytes(), w, h, 3 * w, QImage.Format_RGB888)
    return QPixmap.fromImage(qimg.copy())


class LayerStrip(QWidget):
    """Row of layer boxes; the active one is highlighted."""

    def __init__(self):
        super().__init__()
        self.row = QHBoxLayout()
        self.setLayout(self.row)
        self.boxes = []

    def set_layers(self, names):
        if [b.text() for b in self.boxes] == list(names):
            return
        for box in self.boxes:
            self.row.removeWidget(box)
            box.deleteLater()
        self.boxes = []
        for name in names:
            box = QLabel(name)
            box.setAlignment(Qt.AlignCenter)
            box.setStyleSheet(IDLE_STYLE)
            self.row.addWidget(box)
            self.boxes.append(box)

    def highlight(self, index, name=None):
        for i, box in enumerate(self.boxes):
            box.setStyleSheet(ACTIVE_STYLE if i == index else IDLE_STYLE)


class ClassifierWindow(QWidget):
    def __init__(self, store=None, camera=None, config=None, dataset_path=None):
        super().__init__()
        self.setWindowTitle('Drawing Classifier')
        self.dataset_path = dataset_path
        self.store = store if store is not None else DatasetStore()
        for name in DEFAULT_CATEGORIES:
            if name not in self.store.categories():
                self.store.add_category(name)
        self.camera = camera if camera is not None else WebcamCapture()

        pump = QApplication.processEvents
        self.trainer = TrainingOrchestrator(self.store, config=config or TrainingConfig(), pump=pump)
        self.predictor = PredictionPipeline(preprocessor=self.trainer.preprocessor, pump=pump)

        self.strip = LayerStrip()
        for animator in (self.trainer.animator, self.predictor.animator):
            animator.add_listener(self.strip.highlight)
        self.trainer.add_listener(self.on_epoch)

        # camera column
        self.camera_label = QLabel('Camera')
        self.camera_label.setAlignment(Qt.AlignCenter)
        self.camera_label.setMinimumSize(320, 240)
        self.category_combo = QComboBox()
        self.capture_btn = QPushButton('Capture')
        self.capture_btn.clicked.connect(self.capture_sample)
        self.new_cat_btn = QPushButton('New category')
        self.new_cat_btn.clicked.connect(self.add_category)
        self.dataset_label = QLabel()
        self.preview_box = QVBoxLayout()

        self.train_btn = QPushButton('Train')
        self.train_btn.clicked.connect(self.train_model)
        self.predict_btn = QPushButton('Predict')
        self.predict_btn.clicked.connect(self.predict_once)
        self.export_btn = QPushButton('Export dataset')
        self.export_btn.clicked.connect(self.export_dataset)
        self.import_btn = QPushButton('Import')
        self.import_btn.clicked.connect(self.import_dataset)
        self.clear_btn = QPushButton('Clear dataset')
        self.clear_btn.clicked.connect(self.clear_dataset)

        capture_row = QHBoxLayout()
        capture_row.addWidget(self.category_combo)
        capture_row.addWidget(self.capture_btn)
        capture_row.addWidget(self.new_cat_btn)

        actions = QHBoxLayout()
        for btn in (self.train_btn, self.predict_btn, self.export_btn,
                    self.import_btn, self.clear_btn):
            actions.addWidget(btn)

        left = QVBoxLayout()
        left.addWidget(self.camera_label)
        left.addLayout(capture_row)
        left.addWidget(self.dataset_label)
        left.addLayout(self.preview_box)
        left.addLayout(actions)

        # training column
        self.log_list = QListWidget()
        self.phase_label = QLabel('Phase: idle')
        self.skip_btn = QPushButton('Skip animation')
        self.skip_btn.clicked.connect(self.skip_animation)
        self.result_label = QLabel('Prediction: -')
        self.status_label = QLabel('')
        self.status_label.setWordWrap(True)

        right = QVBoxLayout()
        right.addWidget(QLabel('Training log'))
        right.addWidget(self.log_list)
        right.addWidget(self.phase_label)
        right.addWidget(self.strip)
        right.addWidget(self.skip_btn)
        right.addWidget(self.result_label)
        right.addWidget(self.status_label)

        layout = QHBoxLayout()
        layout.addLayout(left)
        layout.addLayout(right)
        self.setLayout(layout)

        self.timer = QTimer(self)
        self.timer.timeout.connect(self.update_camera)
        self.refresh_dataset_view()

    # --- camera ---------------------------------------------------------

    def start_camera(self, interval_ms=50):
        self.timer.start(interval_ms)

    def update_camera(self):
        try:
            frame = self.camera.read_rgb()
        except CaptureError as e:
            self.timer.stop()
            self.camera_label.setText(f'Camera error: {e.message}')
            return
        pix = rgb2pixmap(frame).scaled(320, 240, Qt.KeepAspectRatio)
        self.camera_label.setPixmap(pix)

    # --- dataset --------------------------------------------------------

    def current_category(self):
        return self.category_combo.currentText()

    def refresh_dataset_view(self):
        current = self.current_category()
        self.category_combo.blockSignals(True)
        self.category_combo.clear()
        self.category_combo.addItems(self.store.categories())
        if current in self.store.categories():
            self.category_combo.setCurrentText(current)
        self.category_combo.blockSignals(False)

        lines = [f'{c}: {self.store.sample_count(c)} images' for c in self.store.categories()]
        self.dataset_label.setText('\n'.join(lines) if lines else '(empty)')

        while self.preview_box.count():
            item = self.preview_box.takeAt(0)
            if item.widget() is not None:
                item.widget().deleteLater()
        for category in self.store.list_categories():
            row = QWidget()
            row_layout = QHBoxLayout()
            row_layout.addWidget(QLabel(category))
            for payload in self.store.recent(category, PREVIEW_COUNT):
                thumb = QLabel()
                try:
                    thumb.setPixmap(pil2pixmap(load_image(payload)).scaled(
                        50, 50, Qt.KeepAspectRatio))
                except ClassifierError:
                    thumb.setText('?')
                row_layout.addWidget(thumb)
            row.setLayout(row_layout)
            self.preview_box.addWidget(row)

    def persist(self):
        if self.dataset_path:
            self.store.save(self.dataset_path)

    def capture_sample(self):
        category = self.current_category()
        if not category:
            self.status_label.setText('Pick a category first')
            return
        try:
            payload = self.camera.grab()
            self.store.add_sample(category, payload)
        except ClassifierError as e:
            self.status_label.setText(str(e))
            return
        self.persist()
        self.refresh_dataset_view()

    def add_category(self):
        name, ok = QInputDialog.getText(self, 'New category', 'Name of the new category:')
        if not ok or not name:
            return
        try:
            self.store.add_category(name)
        except ClassifierError as e:
            self.status_label.setText(str(e))
            return
        self.refresh_dataset_view()
        self.category_combo.setCurrentText(name)

    def export_dataset(self):
        path, _ = QFileDialog.getSaveFileName(
            self, 'Export dataset', 'dataset_clasificador.json', 'JSON (*.json)')
        if not path:
            return
        self.store.save(path)
        self.status_label.setText(f'Dataset exported to {path}')

    def import_dataset(self):
        path, _ = QFileDialog.getOpenFileName(self, 'Import dataset', '', 'JSON (*.json)')
        if not path:
            return
        try:
            with open(path, encoding='utf-8') as f:
                self.store.import_from(f.read())
        except (OSError, ClassifierError) as e:
            self.status_label.setText(f'Error reading file: {e}')
            return
        self.persist()
        self.refresh_dataset_view()
        self.status_label.setText('Dataset imported')

    def clear_dataset(self):
        answer = QMessageBox.question(self, 'Clear dataset', 'Delete the whole dataset?')
        if answer != QMessageBox.Yes:
            return
        try:
            self.store.clear()
        except ClassifierError as e:
            self.status_label.setText(str(e))
            return
        self.persist()
        self.refresh_dataset_view()

    # --- training / prediction -----------------------------------------

    def on_epoch(self, event):
        p = event.progress
        self.log_list.addItem(
            f'Epoch {p.epoch}: loss={p.loss:.3f} acc={p.accuracy:.3f}')
        self.log_list.scrollToBottom()
        self.phase_label.setText(f'Phase: epoch {p.epoch}/{event.total_epochs}')
        self.strip.set_layers(event.activations.layer_names)
        QApplication.processEvents()

    def train_model(self):
        if self.trainer.in_progress:
            self.status_label.setText('Training is already running')
            return
        self.log_list.clear()
        self.train_btn.setEnabled(False)
        self.phase_label.setText('Phase: building tensors')
        QApplication.processEvents()
        try:
            self.trainer.start()
            self.status_label.setText('Training finished')
        except ClassifierError as e:
            self.status_label.setText(f'Error during training: {e}')
        finally:
            self.train_btn.setEnabled(True)
            self.phase_label.setText(f'Phase: {self.trainer.state.value}')

    def predict_once(self):
        try:
            payload = self.camera.grab()
            self.strip.set_layers(self.predictor.layer_names)
            prediction, _ = self.predictor.predict(payload, self.trainer.classifier)
        except ClassifierError as e:
            self.result_label.setText(f'Prediction: {e}')
            return
        self.result_label.setText('Prediction:\n' + '\n'.join(
            f'{label}: {prob:.1%}' for label, prob in prediction))

    def skip_animation(self):
        self.trainer.animator.request_skip()
        self.predictor.animator.request_skip()

    def closeEvent(self, event):
        self.timer.stop()
        self.camera.close()
        super().closeEvent(event)


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    parser = argparse.ArgumentParser(description='Capture, train and test a drawing classifier.')
    parser.add_argument('--dataset', default='dataset.json', help='where the dataset is kept')
    parser.add_argument('--camera', type=int, default=0)
    parser.add_argument('--epochs', type=int, default=TrainingConfig.epochs)
    args = parser.parse_args(argv)
    try:
        config = TrainingConfig(epochs=args.epochs).validate()
    except ConfigError as e:
        parser.error(e.message)

    try:
        store = DatasetStore.load(args.dataset)
    except FileNotFoundError:
        store = DatasetStore()
    except ClassifierError as e:
        logger.error('Ignoring unreadable dataset %s: %s', args.dataset, e)
        store = DatasetStore()

    app = QApplication(sys.argv[:1])
    app.setStyle('Fusion')

    w = ClassifierWindow(store=store, camera=WebcamCapture(args.camera),
                         config=config, dataset_path=args.dataset)
    w.resize(1000, 650)
    w.show()
    w.start_camera()

    return app.exec_()


if __name__ == '__main__':
    sys.exit(main())
