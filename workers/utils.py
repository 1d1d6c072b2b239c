import os

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


def get_secret(secret_name, default=None):
    """
    Retrieve secret from Docker secrets file or environment variable.
    Priority: /run/secrets/{secret_name} > os.environ[{SECRET_NAME}] > default
    """
    secret_path = f"/run/secrets/{secret_name}"
    if os.path.exists(secret_path):
        try:
            with open(secret_path, "r") as f:
                return f.read().strip()
        except IOError:
            pass

    return os.environ.get(secret_name.upper(), default)


class DocumentError(Exception):
    """Raised by workers when a document cannot be processed.

    ``reason`` is a short machine-readable tag ("malformed", "encrypted",
    "remote", ...) that the relay maps to user guidance.
    """

    def __init__(self, message, reason=None):
        super().__init__(message)
        self.reason = reason


def retrying_session(total=3, backoff_factor=1.0):
    """Session whose GETs are retried on connection errors and 5xx responses.

    POST is left out of ``allowed_methods``: an upload is not idempotent.
    """
    retry = Retry(
        total=total,
        backoff_factor=backoff_factor,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset({"GET"}),
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def download_file(url, file_path, session=None, timeout=120):
    session = session or retrying_session()
    with session.get(url, stream=True, timeout=timeout) as resp:
        resp.raise_for_status()
        with open(file_path, "wb") as out_file:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if chunk:
                    out_file.write(chunk)
    return file_path
