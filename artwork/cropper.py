import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageFilter, ImageOps

from .faces import NullFaceDetector

ANALYSIS_MAX_SIDE = 256
DETAIL_WEIGHT = 0.2
SKIN_WEIGHT = 1.8
SATURATION_WEIGHT = 0.3
BOOST_WEIGHT = 100.0
CENTER_WEIGHT = 0.5
OUTSIDE_WEIGHT = -0.5
SKIN_COLOR = (0.78, 0.57, 0.44)
SKIN_THRESHOLD = 0.8
SKIN_BRIGHTNESS = (0.2, 1.0)
SATURATION_THRESHOLD = 0.4
SATURATION_BRIGHTNESS = (0.05, 0.9)
MIN_SCALE = 1.0
SCALE_STEP = 0.1
WINDOW_STEP = 4

_OUTPUT_FORMATS = {"JPEG", "PNG", "WEBP", "GIF", "BMP", "TIFF"}
_DEFAULT_MIME = "application/octet-stream"


@dataclass(frozen=True)
class CropRegion:
    x: int
    y: int
    width: int
    height: int
    score: float = 0.0


def _open(data):
    image = Image.open(io.BytesIO(data))
    image.load()
    fmt = image.format
    image = ImageOps.exif_transpose(image)
    return image, fmt


def _encode(image, fmt):
    fmt = (fmt or "PNG").upper()
    if fmt not in _OUTPUT_FORMATS:
        fmt = "PNG"
    if fmt == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    output = io.BytesIO()
    save_kwargs = {"quality": 92} if fmt in {"JPEG", "WEBP"} else {}
    image.save(output, format=fmt, **save_kwargs)
    return output.getvalue()


def detect_mime(data):
    with Image.open(io.BytesIO(data)) as image:
        fmt = image.format
    if not fmt:
        return _DEFAULT_MIME
    return Image.MIME.get(fmt.upper(), _DEFAULT_MIME)


def _integral(values):
    return np.pad(values.cumsum(axis=0).cumsum(axis=1), ((1, 0), (1, 0)))


def _window_sum(integral, x, y, width, height):
    return (
        integral[y + height, x + width]
        - integral[y, x + width]
        - integral[y + height, x]
        + integral[y, x]
    )


def _skin_map(rgb, lightness):
    magnitude = np.sqrt((rgb ** 2).sum(axis=2)) + 1e-6
    normalized = rgb / magnitude[..., None]
    distance = np.sqrt(((normalized - np.array(SKIN_COLOR)) ** 2).sum(axis=2))
    skin = 1.0 - distance
    mask = (skin > SKIN_THRESHOLD) & (lightness >= SKIN_BRIGHTNESS[0]) & (lightness <= SKIN_BRIGHTNESS[1])
    return np.where(mask, (skin - SKIN_THRESHOLD) / (1.0 - SKIN_THRESHOLD), 0.0)


def _saturation_map(image, lightness):
    saturation = np.asarray(image.convert("HSV"), dtype=np.float64)[..., 1] / 255.0
    mask = (
        (saturation > SATURATION_THRESHOLD)
        & (lightness >= SATURATION_BRIGHTNESS[0])
        & (lightness <= SATURATION_BRIGHTNESS[1])
    )
    return np.where(mask, (saturation - SATURATION_THRESHOLD) / (1.0 - SATURATION_THRESHOLD), 0.0)


def _detail_map(image):
    edges = np.asarray(image.convert("L").filter(ImageFilter.FIND_EDGES), dtype=np.float64) / 255.0
    # FIND_EDGES lights up the outer frame; it carries no content.
    edges[0, :] = edges[-1, :] = 0.0
    edges[:, 0] = edges[:, -1] = 0.0
    return edges


def _boost_map(shape, faces, factor):
    boost = np.zeros(shape, dtype=np.float64)
    rows, cols = shape
    for face in faces:
        x0 = max(0, int(face.x * factor))
        y0 = max(0, int(face.y * factor))
        x1 = min(cols, int(np.ceil((face.x + face.width) * factor)))
        y1 = min(rows, int(np.ceil((face.y + face.height) * factor)))
        if x1 <= x0 or y1 <= y0:
            continue
        boost[y0:y1, x0:x1] = np.maximum(boost[y0:y1, x0:x1], face.weight)
    return boost


def importance_maps(image, faces=(), max_side=ANALYSIS_MAX_SIDE):
    factor = min(1.0, float(max_side) / max(image.width, image.height))
    if factor < 1.0:
        size = (max(1, round(image.width * factor)), max(1, round(image.height * factor)))
        analysis = image.convert("RGB").resize(size, Image.BILINEAR)
    else:
        analysis = image.convert("RGB")
    rgb = np.asarray(analysis, dtype=np.float64) / 255.0
    lightness = (rgb.max(axis=2) + rgb.min(axis=2)) / 2.0
    saliency = (
        _detail_map(analysis) * DETAIL_WEIGHT
        + _skin_map(rgb, lightness) * SKIN_WEIGHT
        + _saturation_map(analysis, lightness) * SATURATION_WEIGHT
    )
    boost = _boost_map(saliency.shape, faces, factor)
    return saliency, boost, factor


def _base_size(cols, rows, aspect):
    if cols / rows > aspect:
        return max(1, min(cols, round(rows * aspect))), rows
    return cols, max(1, min(rows, round(cols / aspect)))


def _candidate_scales(min_scale):
    scales = []
    scale = 1.0
    while scale >= min_scale - 1e-9:
        scales.append(scale)
        scale -= SCALE_STEP
    return scales


def _positions(limit, step):
    positions = list(range(0, limit + 1, step))
    if positions[-1] != limit:
        positions.append(limit)
    return positions


def find_crop(image, width, height, faces=(), min_scale=MIN_SCALE):
    saliency, boost, factor = importance_maps(image, faces)
    rows, cols = saliency.shape
    saliency_ii = _integral(saliency)
    boost_ii = _integral(boost)
    total = saliency_ii[rows, cols]
    aspect = width / height
    base_w, base_h = _base_size(cols, rows, aspect)
    tried = set()
    best = None
    for scale in _candidate_scales(min_scale):
        crop_w, crop_h = max(1, round(base_w * scale)), max(1, round(base_h * scale))
        if (crop_w, crop_h) in tried:
            continue
        tried.add((crop_w, crop_h))
        inset_x, inset_y = crop_w // 4, crop_h // 4
        area = float(crop_w * crop_h)
        for y in _positions(rows - crop_h, WINDOW_STEP):
            for x in _positions(cols - crop_w, WINDOW_STEP):
                inside = _window_sum(saliency_ii, x, y, crop_w, crop_h)
                center = _window_sum(
                    saliency_ii,
                    x + inset_x,
                    y + inset_y,
                    crop_w - 2 * inset_x,
                    crop_h - 2 * inset_y,
                )
                boosted = _window_sum(boost_ii, x, y, crop_w, crop_h)
                score = (
                    inside
                    + CENTER_WEIGHT * center
                    + BOOST_WEIGHT * boosted
                    + OUTSIDE_WEIGHT * (total - inside)
                ) / area
                if best is None or score > best[0]:
                    best = (score, x, y, scale)
    score, x, y, scale = best
    # Size comes from the source so the aspect survives heavy downscaling;
    # only the offset is mapped back from the analysis grid.
    source_w, source_h = _base_size(image.width, image.height, aspect)
    crop_w = max(1, round(source_w * scale))
    crop_h = max(1, round(source_h * scale))
    return CropRegion(
        x=max(0, min(image.width - crop_w, int(round(x / factor)))),
        y=max(0, min(image.height - crop_h, int(round(y / factor)))),
        width=crop_w,
        height=crop_h,
        score=float(score),
    )


def smart_crop(data, width, height=None, face_detector=None):
    height = height or width
    detector = face_detector or NullFaceDetector()
    faces = detector.detect(data)
    image, fmt = _open(data)
    region = find_crop(image, width, height, faces)
    cropped = image.crop((region.x, region.y, region.x + region.width, region.y + region.height))
    return _encode(cropped.resize((width, height), Image.LANCZOS), fmt)


def crop_or_original(data, width, height=None, face_detector=None, label=None):
    try:
        return smart_crop(data, width, height, face_detector=face_detector)
    except Exception as exc:
        logging.warning("Unable to smartcrop %s: %s", label or "image", exc)
        return data


def resize_to_width(data, width):
    image, fmt = _open(data)
    height = max(1, round(image.height * width / image.width))
    return _encode(image.resize((width, height), Image.LANCZOS), fmt)
