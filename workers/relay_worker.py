import os
from urllib.parse import urljoin

import pikepdf
import requests

from .celery_app import celery_app
from .utils import DocumentError, download_file

PROCESSOR_BASE_URL = os.environ.get("PROCESSOR_BASE_URL", "https://academi.cx")
PROCESSOR_UPLOAD_URL = os.environ.get("PROCESSOR_UPLOAD_URL", f"{PROCESSOR_BASE_URL}/upload")
UPLOAD_TIMEOUT = 120

UPLOAD_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "*/*",
    "Origin": PROCESSOR_BASE_URL,
    "Referer": PROCESSOR_BASE_URL + "/",
}


def inspect_pdf(input_path):
    """
    Open the PDF locally before it is sent anywhere, so that broken or
    password-protected files fail fast with a specific reason.
    """
    try:
        with pikepdf.Pdf.open(input_path) as pdf:
            page_count = len(pdf.pages)
    except pikepdf.PasswordError as exc:
        raise DocumentError("PDF is password protected", reason="encrypted") from exc
    except pikepdf.PdfError as exc:
        raise DocumentError(f"PDF could not be read: {exc}", reason="malformed") from exc

    if page_count == 0:
        raise DocumentError("PDF has no pages", reason="malformed")
    return page_count


def resolve_download_url(data, base_url=PROCESSOR_BASE_URL):
    """
    The upload endpoint answers with JSON carrying the result location under
    one of several keys, or with the bare URL as text.
    """
    url = None
    if isinstance(data, dict):
        url = data.get("downloadUrl") or data.get("url") or data.get("file")
    elif isinstance(data, str) and data.startswith("http"):
        url = data

    if not url:
        raise DocumentError("Could not find download URL in response", reason="remote")

    if not url.startswith("http"):
        url = urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))
    return url


def process_document(input_path, params=None):
    """
    Upload a document to the processing service and download the result.
    The result is written next to the input as processed_<name>; returns its path.
    """
    if params is None:
        params = {}

    upload_url = params.get("upload_url", PROCESSOR_UPLOAD_URL)
    file_name = os.path.basename(input_path)

    _, ext = os.path.splitext(file_name)
    if ext.lower() == ".pdf":
        inspect_pdf(input_path)

    try:
        with open(input_path, "rb") as f:
            files = {"file": (file_name, f, "application/octet-stream")}
            resp = requests.post(upload_url, files=files, headers=UPLOAD_HEADERS, timeout=UPLOAD_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise DocumentError(f"Upload failed: {exc}", reason="remote") from exc

    try:
        data = resp.json()
    except ValueError:
        data = resp.text.strip()

    download_url = resolve_download_url(data)

    output_path = os.path.join(os.path.dirname(input_path), f"processed_{file_name}")
    try:
        download_file(download_url, output_path)
    except requests.RequestException as exc:
        raise DocumentError(f"Download failed: {exc}", reason="remote") from exc

    return output_path


@celery_app.task(name="process_document")
def process_document_task(input_path: str, params: dict = None):
    # Exceptions don't survive the result backend with their reason intact,
    # so failures travel as a payload.
    try:
        output_path = process_document(input_path, params)
    except DocumentError as exc:
        return {"ok": False, "reason": exc.reason, "error": str(exc)}
    return {"ok": True, "file_path": output_path}
