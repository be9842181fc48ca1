"""Main entry point for the manifest archiver CLI."""

import asyncio
import sys
import uuid
from pathlib import Path
from typing import Optional

import click

from manifest_archiver.config import ArchiverConfig, load_config, load_config_from_env
from manifest_archiver.exceptions import ConfigurationError
from manifest_archiver.pipeline import ManifestArchiver
from utils.logging import configure_logging
from utils.output import print_summary


def _resolve_config(
    config_path: Optional[Path],
    dry_run: Optional[bool],
    local_manifest: bool,
    work_dir: Optional[Path],
) -> ArchiverConfig:
    config = load_config(config_path) if config_path else load_config_from_env()
    if dry_run is not None:
        config.dry_run = dry_run
    if local_manifest:
        config.manifest.use_local = True
    if work_dir is not None:
        config.work_dir = work_dir
    return config


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to configuration file (YAML). Without it the environment is used "
    "(MANIFEST_BUCKET, FILE_BUCKET, MANIFEST, PATTERNS, ...)",
)
@click.option(
    "--dry-run/--execute",
    default=None,
    help="Only classify and log (default), or upload archives and delete originals",
)
@click.option(
    "--local-manifest",
    is_flag=True,
    default=False,
    help="Read the manifest index from a local file",
)
@click.option(
    "--work-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for manifest parts, cache files and archives",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"]),
    help="Log level",
)
@click.option(
    "--log-format",
    default="console",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Log format: 'console' for human-readable output, 'json' for structured logs",
)
def main(
    config_path: Optional[Path],
    dry_run: Optional[bool],
    local_manifest: bool,
    work_dir: Optional[Path],
    verbose: bool,
    log_level: str,
    log_format: str,
) -> None:
    """Archive S3 objects selected by key patterns from an inventory manifest.

    Every pattern's matches are zipped, uploaded to cold storage and then
    deleted from the source bucket. Runs are dry by default.
    """
    effective_log_level = "DEBUG" if verbose else log_level
    logger = configure_logging(
        log_level=effective_log_level,
        log_format=log_format,
        run_id=uuid.uuid4().hex[:12],
    ).bind(component="main")

    try:
        config = _resolve_config(config_path, dry_run, local_manifest, work_dir)
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    if config.dry_run:
        logger.info("DRY RUN MODE - No archives will be uploaded and no objects deleted")

    archiver = ManifestArchiver(config, logger=logger)
    try:
        stats = asyncio.run(archiver.run())
    except Exception as e:
        logger.error("Archival failed", error=str(e), exc_info=verbose)
        if log_format == "console" and archiver.last_stats:
            print_summary(archiver.last_stats)
        sys.exit(1)

    if log_format == "console":
        print_summary(stats)


if __name__ == "__main__":
    main()
