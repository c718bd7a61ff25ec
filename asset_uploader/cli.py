"""
Command line interface: upload a local file to the asset store.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click

from asset_uploader.client import AssetStoreClient
from asset_uploader.core.config import settings
from asset_uploader.core.exceptions import AssetUploaderError
from asset_uploader.core.logging_config import configure_logging
from asset_uploader.schemas import AccessEnum, UploaderUploadRequest

logger = logging.getLogger(__name__)


async def run_upload(
    file_path: Path,
    request: UploaderUploadRequest,
    domain: Optional[str],
    token: Optional[str],
    options: Dict[str, Any]
) -> Dict[str, Any]:
    """Upload a file and return the completion response."""
    async with AssetStoreClient(domain=domain, api_token=token) as client:
        with open(file_path, "rb") as stream:
            return await client.uploader.upload(stream, request, **options)


@click.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", help="Asset name (defaults to the file name without extension)")
@click.option("--path", "asset_path", default=None, help="Folder path in the store")
@click.option("--format", "asset_format", default=None, help="Asset format, e.g. mp4")
@click.option("--access", type=click.Choice([a.value for a in AccessEnum]), default=None)
@click.option("--tag", "tags", multiple=True, help="Tag to attach (repeatable)")
@click.option("--overwrite", is_flag=True, help="Overwrite an existing asset")
@click.option("--filename-override", is_flag=True, help="Let the store rename on conflict")
@click.option("--chunk-size", type=int, default=None, help="Bytes per part")
@click.option("--max-retries", type=int, default=None, help="Retries per part")
@click.option("--concurrency", type=int, default=None, help="Parallel part uploads")
@click.option("--backoff-factor", type=float, default=None, help="Exponential backoff multiplier")
@click.option("--domain", envvar="ASSET_API_DOMAIN", default=None, help="Platform API base URL")
@click.option("--token", envvar="ASSET_API_TOKEN", default=None, help="Platform API token")
@click.option("--log-level", default=settings.LOG_LEVEL, show_default=True)
def main(
    file_path: Path,
    name: Optional[str],
    asset_path: Optional[str],
    asset_format: Optional[str],
    access: Optional[str],
    tags: tuple,
    overwrite: bool,
    filename_override: bool,
    chunk_size: Optional[int],
    max_retries: Optional[int],
    concurrency: Optional[int],
    backoff_factor: Optional[float],
    domain: Optional[str],
    token: Optional[str],
    log_level: str
):
    """Upload FILE_PATH in chunks and print the store's response as JSON."""
    configure_logging(log_level)

    request = UploaderUploadRequest(
        name=name or file_path.stem,
        path=asset_path,
        format=asset_format or (file_path.suffix.lstrip(".") or None),
        access=access,
        tags=list(tags) or None,
        overwrite=overwrite or None,
        filename_override=filename_override or None,
    )
    options = {
        key: value
        for key, value in {
            "chunk_size": chunk_size,
            "max_retries": max_retries,
            "concurrency": concurrency,
            "backoff_factor": backoff_factor,
        }.items()
        if value is not None
    }

    try:
        result = asyncio.run(run_upload(file_path, request, domain, token, options))
    except AssetUploaderError as e:
        logger.debug("Upload failed", exc_info=True)
        raise click.ClickException(str(e))

    click.echo(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
