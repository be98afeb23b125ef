"""Command line access to the local S3 stand-in."""

import asyncio
import logging
import mimetypes
import sys
from typing import Optional, Tuple

import click

from config.settings import StorageConfig, get_logging_config, get_storage_config, load_options_file

from .client import create_client
from .errors import parse_error_xml
from .protocol import Response

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Async runners
# ----------------------------------------------------------------------
async def _put(config: StorageConfig, key: str, data: bytes, content_type: str) -> Tuple[Response, bytes]:
    client = create_client(config)
    request = client.put(key, {"Content-Type": content_type, "Content-Length": len(data)})
    request.once("continue", lambda: request.end(data))
    response = await request.wait_response()
    return response, await response.read()


async def _call(config: StorageConfig, method: str, key: str) -> Tuple[Response, bytes]:
    client = create_client(config)
    response = await getattr(client, method)(key).wait_response()
    return response, await response.read()


def _run(coro) -> Tuple[Response, bytes]:
    try:
        return asyncio.run(coro)
    except ValueError as e:
        coro.close()
        raise click.ClickException(str(e))


def _report(response: Response, body: bytes, err: bool = False):
    click.echo(f"Status: {response.status_code}", err=err)
    for name, value in response.headers.items():
        click.echo(f"{name}: {value}", err=err)

    if response.status_code >= 300:
        code, message = parse_error_xml(body, str(response.status_code)) if body else (str(response.status_code), "")
        click.echo(f"Error: {code} {message}".rstrip(), err=True)
        sys.exit(1)


# ----------------------------------------------------------------------
# CLI Commands
# ----------------------------------------------------------------------
@click.group()
@click.option("--bucket", default=None, help="Bucket name (defaults to LOCAL_S3_BUCKET).")
@click.option("--prefix", default=None, help="Storage root (defaults to LOCAL_S3_PREFIX).")
@click.option("--options-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="JSON file with key, secret and bucket.")
@click.pass_context
def cli(ctx, bucket: Optional[str], prefix: Optional[str], options_file: Optional[str]):
    """Local S3 stand-in CLI."""
    log_config = get_logging_config()
    logging.basicConfig(level=log_config.level.upper(), format=log_config.format)

    config = load_options_file(options_file) if options_file else get_storage_config()
    overrides = {k: v for k, v in {"bucket": bucket, "prefix": prefix}.items() if v}
    ctx.obj = config.model_copy(update=overrides)


@cli.command()
@click.argument("key")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--content-type", default=None, help="Defaults to a guess from the file name.")
@click.pass_obj
def put(config: StorageConfig, key: str, file: str, content_type: Optional[str]):
    """Upload FILE as KEY."""
    with open(file, "rb") as f:
        data = f.read()

    mime = content_type or mimetypes.guess_type(file)[0] or "application/octet-stream"
    response, body = _run(_put(config, key, data, mime))
    _report(response, body)


@cli.command()
@click.argument("key")
@click.option("-o", "--output", type=click.Path(dir_okay=False), default=None,
              help="Write the object here instead of stdout.")
@click.pass_obj
def get(config: StorageConfig, key: str, output: Optional[str]):
    """Download KEY."""
    response, body = _run(_call(config, "get", key))
    _report(response, body, err=output is None)

    if output:
        with open(output, "wb") as f:
            f.write(body)
        click.echo(f"Wrote {len(body)} bytes to {output}")
    else:
        click.get_binary_stream("stdout").write(body)


@cli.command()
@click.argument("key")
@click.pass_obj
def head(config: StorageConfig, key: str):
    """Show the stored headers of KEY."""
    response, body = _run(_call(config, "head", key))
    _report(response, body)


@cli.command()
@click.argument("key")
@click.pass_obj
def delete(config: StorageConfig, key: str):
    """Delete KEY."""
    response, body = _run(_call(config, "delete", key))
    _report(response, body)


if __name__ == "__main__":
    cli()
