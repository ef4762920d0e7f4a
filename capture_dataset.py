# webcam source for dataset captures and live predictions
import base64
import logging
import sys

import cv2

from dataset_store import DatasetStore
from errors import CaptureError

logger = logging.getLogger(__name__)


class WebcamCapture:
    def __init__(self, device=0, jpeg_quality=90):
        self.device = device
        self.jpeg_quality = jpeg_quality
        self.cap = None

    def open(self):
        if self.cap is not None:
            return self
        cap = cv2.VideoCapture(self.device)
        if not cap.isOpened():
            cap.release()
            raise CaptureError(f'Could not open camera {self.device}')
        self.cap = cap
        return self

    def close(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def read_frame(self):
        """Latest BGR frame from the camera."""
        self.open()
        ret, frame = self.cap.read()
        if not ret or frame is None:
            raise CaptureError('Camera returned no frame')
        return frame

    def read_rgb(self):
        return cv2.cvtColor(self.read_frame(), cv2.COLOR_BGR2RGB)

    def grab(self):
        """Capture one frame as a JPEG data URL payload."""
        return frame_to_payload(self.read_frame(), self.jpeg_quality)


def frame_to_payload(frame, jpeg_quality=90):
    ok, buf = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), jpeg_quality])
    if not ok:
        raise CaptureError('Could not encode camera frame')
    return 'data:image/jpeg;base64,' + base64.b64encode(buf.tobytes()).decode('ascii')


def capture(dataset_path='dataset.json', class_name='Gato', max_images=200, device=0):
    """Interactive capture: press s to save a frame into the dataset, q to quit."""
    try:
        store = DatasetStore.load(dataset_path)
    except FileNotFoundError:
        store = DatasetStore()

    count = 0
    with WebcamCapture(device) as cam:
        while count < max_images:
            try:
                frame = cam.read_frame()
            except CaptureError as e:
                logger.error('%s', e)
                break
            cv2.imshow('capture - press s to save, q to quit', frame)
            key = cv2.waitKey(1) & 0xFF
            if key == ord('s'):
                store.add_sample(class_name, frame_to_payload(frame, cam.jpeg_quality))
                count += 1
                print(f'Saved {class_name} #{store.sample_count(class_name)}')
            elif key == ord('q'):
                break
    cv2.destroyAllWindows()
    store.save(dataset_path)
    return count


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    capture(*sys.argv[1:3])
