"""
StackArchive Orchestrator: runs the end-to-end archival pipeline.

Resolve -> discover -> fetch (sequential, paced) -> convert -> images
(parallel) -> assemble. Every run owns its own client, pacer and queues.
"""

from __future__ import annotations

import os
import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional

import requests

from .bundle import assemble_document_bundle
from .converter import transform
from .discovery import ArchiveDiscovery, DateRange
from .ebook import assemble_ebook
from .errors import DiscoveryError, ValidationError
from .fetcher import Credential, PostFetcher
from .http_client import PacedClient
from .images import ImageRetriever
from .logger import ErrorTracker, create_error_tracker
from .models import ArchiveBundle, PostReference, ProcessedDocument, Publication, RawPost
from .resolver import EndpointResolver
from ..utils.file_manager import FileManager, archive_filename


COOKIE_ENV_VAR = "STACKARCHIVE_COOKIE"

OUTPUT_FORMATS = {"markdown": "zip", "epub": "epub"}


@dataclass
class RunConfig:
    identifier: str
    output_dir: str = "output"
    output_format: str = "markdown"  # markdown | epub
    request_delay: float = 1.0
    image_workers: int = 5
    timeout: float = 30.0
    max_retries: int = 2
    credential: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def __post_init__(self):
        if self.output_format not in OUTPUT_FORMATS:
            raise ValidationError(f"Unknown output format: {self.output_format}")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError("Start date must not be after end date")

    @classmethod
    def from_env(cls, identifier: str, **kwargs) -> "RunConfig":
        """Build a config, taking the credential from the environment when not given."""
        if not kwargs.get("credential"):
            kwargs["credential"] = os.environ.get(COOKIE_ENV_VAR) or None
        return cls(identifier=identifier, **kwargs)

    @property
    def date_range(self) -> Optional[DateRange]:
        if not self.start_date and not self.end_date:
            return None
        return DateRange(self.start_date, self.end_date)


@dataclass
class RunResult:
    publication: Publication
    filename: str
    data: bytes
    documents: int = 0
    images: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class ArchiveController:
    """
    Public operations of the pipeline.

    Each operation can be driven on its own by a caller; ``run`` chains them.
    """

    def __init__(self,
                 config: RunConfig,
                 logger: Optional[logging.Logger] = None,
                 session: Optional[requests.Session] = None,
                 image_session: Optional[requests.Session] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.tracker: ErrorTracker = create_error_tracker("run")
        self.client = PacedClient(min_interval=config.request_delay,
                                  timeout=config.timeout,
                                  max_retries=config.max_retries,
                                  session=session)
        self.resolver = EndpointResolver(self.client)
        self.discovery = ArchiveDiscovery(self.client)
        self.images = ImageRetriever(max_workers=config.image_workers,
                                     timeout=config.timeout,
                                     session=image_session,
                                     tracker=self.tracker)
        self.files = FileManager(config.output_dir)
        self._stop_event = threading.Event()

    def stop(self):
        """Ask the run to stop before the next post is fetched."""
        self._stop_event.set()

    def close(self):
        self.client.close()
        self.images.close()

    # Operations

    def resolve_publication(self, identifier: str, credential: Optional[str] = None) -> Publication:
        """Raises ``FetchError`` when the publication landing page is unreachable."""
        base_url = self.resolver.resolve(identifier, credential)
        return self.resolver.describe(identifier, base_url, credential)

    def discover_posts(self,
                       publication: Publication,
                       date_range: Optional[DateRange] = None,
                       credential: Optional[str] = None) -> List[PostReference]:
        return self.discovery.discover(publication.base_url, credential, date_range)

    def fetch_all_posts(self,
                        publication: Publication,
                        references: List[PostReference],
                        credential: Optional[str] = None,
                        on_progress: Optional[Callable[[int, int, str], None]] = None,
                        date_range: Optional[DateRange] = None) -> List[RawPost]:
        """Verify the credential (warnings only), then fetch every post."""
        fetcher = PostFetcher(self.client, publication,
                              credential=Credential.parse(credential),
                              tracker=self.tracker,
                              should_stop=self._stop_event.is_set)
        fetcher.verify_credential()
        return fetcher.fetch_all(references, on_progress=on_progress, date_range=date_range)

    def transform(self, posts: List[RawPost], publication_name: str) -> List[ProcessedDocument]:
        return transform(posts, publication_name)

    def retrieve_images(self,
                        documents: List[ProcessedDocument],
                        on_progress: Optional[Callable[[int, int, str], None]] = None) -> Dict[str, bytes]:
        return self.images.retrieve(documents, on_progress=on_progress)

    def assemble_document_bundle(self, publication: Publication,
                                 documents: List[ProcessedDocument],
                                 images: Dict[str, bytes]) -> bytes:
        return assemble_document_bundle(publication, documents, images)

    def assemble_ebook(self, publication: Publication,
                       documents: List[ProcessedDocument],
                       images: Dict[str, bytes]) -> bytes:
        return assemble_ebook(publication, documents, images)

    def assemble(self, bundle: ArchiveBundle) -> bytes:
        """Assemble a bundle in the configured output format."""
        if self.config.output_format == "epub":
            return self.assemble_ebook(bundle.publication, bundle.documents, bundle.images)
        return self.assemble_document_bundle(bundle.publication, bundle.documents, bundle.images)

    def run(self, progress: Optional[Callable[[object], None]] = None, save: bool = True) -> RunResult:
        """
        Run the whole pipeline for the configured publication.

        Args:
            progress: Optional callback receiving event dictionaries
            save: Write the bundle into the output directory

        Returns:
            RunResult with the bundle bytes and the run's warnings

        Raises:
            FetchError: The publication could not be reached
            DiscoveryError: No listing, or no posts at all
            ConversionError: E-book mode produced no chapters
        """
        cfg = self.config

        def emit(event: Dict[str, object]):
            if progress:
                progress(event)

        emit({"type": "stage", "stage": "resolving", "identifier": cfg.identifier})
        publication = self.resolve_publication(cfg.identifier, cfg.credential)

        emit({"type": "stage", "stage": "discovering", "publication": publication.name})
        references = self.discover_posts(publication, cfg.date_range, cfg.credential)
        emit({"type": "discovery", "total": len(references)})
        if not references:
            raise DiscoveryError(f"No posts found for {publication.name}")

        posts = self.fetch_all_posts(
            publication, references, cfg.credential,
            on_progress=lambda current, total, title: emit(
                {"type": "post", "current": current, "total": total, "title": title}),
            date_range=cfg.date_range,
        )
        if not posts:
            raise DiscoveryError(f"None of the {len(references)} posts of {publication.name} could be fetched")

        documents = self.transform(posts, publication.name)

        emit({"type": "stage", "stage": "images"})
        images = self.retrieve_images(
            documents,
            on_progress=lambda index, total, done: emit(
                {"type": "images", "post": index, "total": total, "progress": done}),
        )

        emit({"type": "stage", "stage": "assembling", "format": cfg.output_format})
        data = self.assemble(ArchiveBundle(publication, documents, images))

        filename = archive_filename(publication.identifier, OUTPUT_FORMATS[cfg.output_format])
        if save:
            self.files.save_bundle(filename, data)

        result = RunResult(
            publication=publication,
            filename=filename,
            data=data,
            documents=len(documents),
            images=len(images),
            warnings=[w["message"] for w in self.tracker.warnings],
            errors=[f"{e['type']}: {e['message']}" for e in self.tracker.errors],
        )
        emit({"type": "complete", "filename": filename, "documents": result.documents, "images": result.images})
        self.logger.info(f"Run complete: {filename} ({result.documents} posts, {result.images} images, "
                         f"{len(result.warnings)} warnings)")
        return result
