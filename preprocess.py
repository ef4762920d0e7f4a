# preprocess.py
import base64
import binascii
import io

import torchvision.transforms as T
from PIL import Image

from errors import ConfigError, DecodeError
from settings import IMAGE_SIZE, MIN_IMAGE_SIZE

DATA_URL_PREFIX = 'data:'


def load_image(payload):
    """
    Decode one image payload into an RGB PIL image.
    Accepts a data URL ('data:image/jpeg;base64,...'), a bare base64 string
    or the raw encoded bytes. Alpha is dropped.
    """
    if isinstance(payload, str):
        if payload.startswith(DATA_URL_PREFIX):
            header, sep, payload = payload.partition(',')
            if not sep or not header.endswith(';base64'):
                raise DecodeError('Only base64 data URLs are supported')
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f'Image payload is not valid base64: {e}') from e
    elif isinstance(payload, (bytes, bytearray)):
        raw = bytes(payload)
    else:
        raise DecodeError(f'Unsupported image payload type: {type(payload).__name__}')

    try:
        img = Image.open(io.BytesIO(raw))
        return img.convert('RGB')
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f'Could not read image: {e}') from e


def image_to_payload(pil_image, fmt='JPEG'):
    """Encode a PIL image as the data URL payload stored in the dataset."""
    buffer = io.BytesIO()
    pil_image.convert('RGB').save(buffer, format=fmt)
    mime = Image.MIME.get(fmt.upper(), f'image/{fmt.lower()}')
    return f'data:{mime};base64,' + base64.b64encode(buffer.getvalue()).decode('ascii')


class Preprocessor:
    """
    Payload -> float tensor of shape (3, size, size) with values in [0, 1].
    The same instance (same size, nearest-neighbour resize, /255 scaling)
    must be used for training samples and for live captures.
    """
    def __init__(self, size=IMAGE_SIZE):
        if size < MIN_IMAGE_SIZE:
            raise ConfigError(f'Image size must be at least {MIN_IMAGE_SIZE}, got {size}')
        self.size = size
        self.transform = T.Compose([
            T.Resize((size, size), interpolation=T.InterpolationMode.NEAREST),
            T.ToTensor(),
        ])

    def encode(self, payload):
        img = load_image(payload)
        return self.transform(img)

    def encode_image(self, pil_image):
        return self.transform(pil_image.convert('RGB'))
