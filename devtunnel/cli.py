"""Command line entry point for DevTunnel."""

import sys
from pathlib import Path

import click

from devtunnel.common.auth import SessionAuthority
from devtunnel.common.config import DevTunnelConfig
from devtunnel.common.log_base import get_logger, log_operation, setup_logging
from devtunnel.common.utils import generate_request_id
from devtunnel.protocol import (
    MessageEncoder,
    ProtocolViolationError,
    ResponseAssembler,
    parse_message,
    serialize_message,
)

logger = get_logger(__name__)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Configuration file path (TOML)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level",
)
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None = None,
    log_level: str | None = None,
    debug: bool = False,
) -> None:
    """
    DevTunnel - expose a local HTTP service through a tunnel relay.

    Examples:
        # Frame a file as a streamed HTTP response
        devtunnel frame page.html --stream --chunk-size 1024

        # Reassemble framed output back into the body
        devtunnel frame page.html --stream | devtunnel assemble -o out.html
    """
    dt_config = DevTunnelConfig.from_file(config) if config else DevTunnelConfig()

    if log_level:
        dt_config.logging.level = log_level.upper()
    if debug:
        dt_config.debug = True
        dt_config.logging.level = "DEBUG"

    setup_logging(
        level=dt_config.logging.level,
        log_dir=dt_config.logging.log_dir,
        environment=dt_config.logging.environment,
    )
    ctx.obj = dt_config


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--request-id", help="Request id (generated if omitted)")
@click.option("--status", "status_code", type=int, default=200, show_default=True)
@click.option(
    "--content-type", default="application/octet-stream", show_default=True
)
@click.option(
    "--stream/--unary",
    default=None,
    help="Force framing mode (default: stream bodies above the threshold)",
)
@click.option("--chunk-size", type=click.IntRange(min=1), help="Streamed chunk size")
@click.pass_obj
def frame(
    config: DevTunnelConfig,
    path: Path,
    request_id: str | None,
    status_code: int,
    content_type: str,
    stream: bool | None,
    chunk_size: int | None,
) -> None:
    """Print the envelopes framing PATH as an HTTP response, one per line."""
    encoder = MessageEncoder(
        chunk_size=chunk_size or config.protocol.chunk_size,
        stream_threshold=config.protocol.stream_threshold,
    )
    body = path.read_bytes()
    request_id = request_id or generate_request_id()

    with log_operation("frame", request_id=request_id) as op_logger:
        count = 0
        for envelope in encoder.iter_http_response(
            request_id, status_code, {"content-type": content_type}, body, stream
        ):
            click.echo(serialize_message(envelope))
            count += 1
        op_logger.debug("Framed response", messages=count, size=len(body))


@main.command()
@click.argument("source", type=click.File("r"), default="-")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    help="Write the reconstructed body here instead of stdout",
)
def assemble(source, output: Path | None) -> None:
    """Reassemble framed response envelopes read from SOURCE."""
    assembler = ResponseAssembler()
    bodies: list[bytes] = []

    for line_no, line in enumerate(source, start=1):
        if not line.strip():
            continue

        envelope = parse_message(line)
        if envelope is None:
            click.echo(f"Line {line_no}: not a valid message, discarded", err=True)
            continue

        try:
            assembled = assembler.handle(envelope)
        except ProtocolViolationError as e:
            click.echo(f"Protocol violation [{e.code}] at line {line_no}: {e}", err=True)
            sys.exit(2)
        except ValueError as e:
            click.echo(f"Line {line_no}: {e}", err=True)
            continue

        if assembled is not None:
            click.echo(
                f"{assembled.request_id}: status {assembled.status_code}, "
                f"{len(assembled.body or b'')} bytes"
                + (f" in {assembled.chunk_count} chunks" if assembled.streamed else ""),
                err=True,
            )
            bodies.append(assembled.body or b"")

    unfinished = assembler.pending()
    if unfinished:
        click.echo(f"Incomplete streams: {', '.join(unfinished)}", err=True)
        sys.exit(3)

    data = b"".join(bodies)
    logger.debug("Responses assembled", responses=len(bodies), size=len(data))
    if output:
        output.write_bytes(data)
    else:
        click.get_binary_stream("stdout").write(data)


@main.command("dev-key")
@click.pass_obj
def dev_key(config: DevTunnelConfig) -> None:
    """Show the development API key of a fresh authority (in-memory only)."""
    authority = SessionAuthority(config.auth)
    key = authority.get_dev_key()
    validation = authority.validate_api_key(key)

    click.echo(key)
    click.echo(f"permissions: {', '.join(validation.permissions)}")
    click.echo(f"rate limit: {validation.rate_limit}/min (not enforced)")


if __name__ == "__main__":
    main()
