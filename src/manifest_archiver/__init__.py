"""Manifest Archiver - moves S3 objects selected by key patterns into cold storage archives."""

from manifest_archiver.archive_job import ArchiveJob, JobState
from manifest_archiver.classifier import RecordClassifier
from manifest_archiver.deleter import ObjectDeleter
from manifest_archiver.fetcher import ObjectFetcher
from manifest_archiver.manifest import ManifestLoader
from manifest_archiver.pipeline import ManifestArchiver
from manifest_archiver.s3_client import S3Client
from manifest_archiver.uploader import ArchiveUploader

__version__ = "0.1.0"

__all__ = [
    "ManifestArchiver",
    "ManifestLoader",
    "RecordClassifier",
    "ArchiveJob",
    "JobState",
    "ObjectFetcher",
    "ArchiveUploader",
    "ObjectDeleter",
    "S3Client",
]
