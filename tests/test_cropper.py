import io
import unittest

from PIL import Image, ImageDraw

from artwork.cropper import crop_or_original, detect_mime, find_crop, resize_to_width, smart_crop
from artwork.faces import FaceDetector, FaceRegion, NullFaceDetector


def _image_bytes(image, fmt):
    output = io.BytesIO()
    image.save(output, format=fmt)
    return output.getvalue()


def _open(data):
    return Image.open(io.BytesIO(data))


class FixedFaceDetector(FaceDetector):
    def __init__(self, faces):
        self.faces = faces

    def detect(self, data):
        return list(self.faces)


class BrokenFaceDetector(FaceDetector):
    def detect(self, data):
        raise RuntimeError("detector exploded")


class CropperTests(unittest.TestCase):
    def test_smart_crop_square_keeps_format(self):
        source = _image_bytes(Image.new("RGB", (800, 500), (30, 90, 160)), "PNG")
        cropped = smart_crop(source, 600, face_detector=NullFaceDetector())
        image = _open(cropped)
        self.assertEqual(image.size, (600, 600))
        self.assertEqual(image.format, "PNG")
        self.assertEqual(detect_mime(cropped), "image/png")

    def test_smart_crop_custom_height(self):
        source = _image_bytes(Image.new("RGB", (640, 640), (200, 200, 200)), "JPEG")
        cropped = smart_crop(source, 320, 180)
        image = _open(cropped)
        self.assertEqual(image.size, (320, 180))
        self.assertEqual(detect_mime(cropped), "image/jpeg")

    def test_face_boost_pulls_crop_towards_face(self):
        image = Image.new("RGB", (900, 300), (128, 128, 128))
        faces = [FaceRegion(x=700, y=100, width=100, height=100)]
        region = find_crop(image, 300, 300, faces)
        self.assertLessEqual(region.x, 700)
        self.assertGreaterEqual(region.x + region.width, 800)
        self.assertEqual(region.width, region.height)

    def test_saturated_detail_attracts_crop(self):
        image = Image.new("RGB", (900, 300), (128, 128, 128))
        ImageDraw.Draw(image).rectangle((50, 50, 250, 250), fill=(230, 10, 10))
        region = find_crop(image, 300, 300)
        self.assertLess(region.x, 50)
        self.assertGreater(region.x + region.width, 250)

    def test_crop_keeps_target_aspect_on_extreme_panorama(self):
        image = Image.new("RGB", (10000, 100), (90, 90, 90))
        region = find_crop(image, 600, 600)
        self.assertEqual((region.width, region.height), (100, 100))
        self.assertLessEqual(region.x + region.width, image.width)

        region = find_crop(Image.new("RGB", (4000, 60), (90, 90, 90)), 320, 180)
        self.assertEqual((region.width, region.height), (107, 60))
        self.assertLessEqual(region.x + region.width, 4000)

    def test_crop_failure_returns_original(self):
        garbage = b"definitely not an image"
        self.assertEqual(crop_or_original(garbage, 600), garbage)

        source = _image_bytes(Image.new("RGB", (80, 40), (1, 2, 3)), "PNG")
        with self.assertLogs(level="WARNING"):
            result = crop_or_original(source, 600, face_detector=BrokenFaceDetector(), label="a1")
        self.assertEqual(result, source)

    def test_face_detector_result_used(self):
        source = _image_bytes(Image.new("RGB", (900, 300), (128, 128, 128)), "PNG")
        detector = FixedFaceDetector([FaceRegion(x=0, y=0, width=50, height=50)])
        self.assertEqual(_open(smart_crop(source, 64, face_detector=detector)).size, (64, 64))

    def test_resize_to_width_keeps_aspect(self):
        source = _image_bytes(Image.new("RGB", (800, 400), (10, 10, 10)), "JPEG")
        resized = _open(resize_to_width(source, 300))
        self.assertEqual(resized.size, (300, 150))
        self.assertEqual(resized.format, "JPEG")


if __name__ == "__main__":
    unittest.main()
