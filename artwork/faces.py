import logging
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class FaceRegion:
    x: int
    y: int
    width: int
    height: int
    weight: float = 1.0


class FaceDetector:
    name = ""

    def detect(self, data):
        return []


class NullFaceDetector(FaceDetector):
    name = "none"


class OpenCVFaceDetector(FaceDetector):
    name = "opencv"

    def __init__(self, cv2_module, numpy_module, cascade_file):
        self._cv2 = cv2_module
        self._np = numpy_module
        self._classifier = cv2_module.CascadeClassifier(cascade_file)

    def detect(self, data):
        cv2 = self._cv2
        array = cv2.imdecode(self._np.frombuffer(data, dtype=self._np.uint8), cv2.IMREAD_COLOR)
        if array is None:
            raise ValueError("OpenCV could not decode image")
        gray = cv2.cvtColor(array, cv2.COLOR_BGR2GRAY)
        faces = self._classifier.detectMultiScale(gray, scaleFactor=1.1, minNeighbors=4, minSize=(30, 30))
        return [
            FaceRegion(x=int(x), y=int(y), width=int(w), height=int(h), weight=1.0)
            for (x, y, w, h) in faces
        ]


def select_face_detector(enabled=True):
    if not enabled:
        return NullFaceDetector()
    try:
        import cv2
        import numpy
    except ImportError:
        logging.info("opencv not installed; face-boosted cropping disabled")
        return NullFaceDetector()
    classifier_dir = getattr(getattr(cv2, "data", None), "haarcascades", "")
    cascade_file = os.path.join(classifier_dir, "haarcascade_frontalface_default.xml")
    if not os.path.exists(cascade_file):
        logging.warning("opencv face cascade missing at %s; face-boosted cropping disabled", cascade_file)
        return NullFaceDetector()
    return OpenCVFaceDetector(cv2, numpy, cascade_file)
