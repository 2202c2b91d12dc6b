"""
Image Retrieval

This module downloads every image referenced by a run's documents through a
small pool of worker threads sharing one work queue. Image requests are not
paced; a failed image is logged and left out of the result.
"""

import queue
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

import requests

from .http_client import USER_AGENT
from .logger import ErrorTracker
from .models import ImageReference, ProcessedDocument


DEFAULT_IMAGE_WORKERS = 5

ImageProgressCallback = Callable[[int, int, str], None]


class ImageRetriever:
    """
    Bounded-concurrency image downloader.

    One instance serves one run: its queue, counters and results are never
    shared with another publication.
    """

    def __init__(self,
                 max_workers: int = DEFAULT_IMAGE_WORKERS,
                 timeout: float = 30,
                 session: Optional[requests.Session] = None,
                 tracker: Optional[ErrorTracker] = None):
        """
        Args:
            max_workers: Upper bound on concurrent downloads
            timeout: Per-image request timeout in seconds
            session: Optional session (tests inject fakes here)
            tracker: Optional run error tracker for failed images
        """
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self.tracker = tracker
        self.logger = logging.getLogger(__name__)
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': USER_AGENT})

    def worker_count(self, pending: int) -> int:
        """Pool size for a batch: never more workers than pending images."""
        return min(self.max_workers, pending)

    def download(self, url: str) -> bytes:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.content

    def retrieve(self,
                 documents: List[ProcessedDocument],
                 on_progress: Optional[ImageProgressCallback] = None) -> Dict[str, bytes]:
        """
        Download all images of all documents.

        Args:
            documents: Converted documents carrying image references
            on_progress: Called as ``(document_index, document_count, "done/total")``
                after each image, success or failure

        Returns:
            Mapping of local filename to image bytes, in document then image order
        """
        work: "queue.Queue[Tuple[int, int, ImageReference]]" = queue.Queue()
        for doc_index, document in enumerate(documents):
            for image_index, image in enumerate(document.images):
                work.put((doc_index, image_index, image))

        total = work.qsize()
        if total == 0:
            return {}

        workers = self.worker_count(total)
        self.logger.info(f"Downloading {total} images with {workers} workers")

        results: Dict[Tuple[int, int], Tuple[str, bytes]] = {}
        lock = threading.Lock()
        done = 0

        def worker():
            nonlocal done
            while True:
                try:
                    doc_index, image_index, image = work.get_nowait()
                except queue.Empty:
                    return
                try:
                    data = self.download(image.original_url)
                except Exception as e:
                    self.logger.warning(f"Failed to download image {image.original_url}: {e}")
                    if self.tracker:
                        self.tracker.log_error(e, context='image', url=image.original_url)
                    data = None

                with lock:
                    if data is not None:
                        image.data = data
                        results[(doc_index, image_index)] = (image.local_filename, data)
                    done += 1
                    if on_progress:
                        on_progress(doc_index, len(documents), f"{done}/{total}")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

        image_map = {name: data for _, (name, data) in sorted(results.items())}
        self.logger.info(f"Downloaded {len(image_map)}/{total} images")
        return image_map

    def close(self):
        self.session.close()
