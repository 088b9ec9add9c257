import os

import requests

DEFAULT_TIMEOUT = 30


def is_local_source(source):
    return bool(source) and source.startswith(os.sep)


def fetch_bytes(source, session=None, timeout=DEFAULT_TIMEOUT):
    if not source:
        raise ValueError("image source is required")
    if is_local_source(source):
        with open(source, "rb") as f:
            return f.read()
    getter = session.get if session is not None else requests.get
    response = getter(source, timeout=timeout)
    response.raise_for_status()
    return response.content
