"""CLI entry point for s3parts."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from s3parts.checksum import ChecksumAlgorithm
from s3parts.client import S3Client
from s3parts.config import S3PartsConfig, load_config, parse_size
from s3parts.errors import S3PartsError
from s3parts.logging_config import configure_logging
from s3parts.models import ObjectDescriptor

logger = logging.getLogger("s3parts")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="s3parts",
        description="s3parts - multipart uploads to S3-compatible storage",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    put = commands.add_parser("put", help="Upload a file or stdin to BUCKET/KEY")
    put.add_argument("bucket", help="Target bucket")
    put.add_argument("key", help="Target object key")
    put.add_argument("file", help="File to upload, or '-' to stream stdin")
    put.add_argument(
        "--part-size",
        type=parse_size,
        default=None,
        help="Part size, e.g. 16MiB (overrides config)",
    )
    put.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Number of parts uploaded in parallel (overrides config)",
    )
    put.add_argument(
        "--checksum",
        type=ChecksumAlgorithm,
        default=None,
        choices=list(ChecksumAlgorithm),
        metavar="{" + ",".join(alg.value for alg in ChecksumAlgorithm) + "}",
        help="Checksum algorithm (overrides config)",
    )
    put.add_argument(
        "--resume",
        action="store_true",
        default=None,
        help="Reuse the newest incomplete upload for the key",
    )
    return parser.parse_args(argv)


async def _put(config: S3PartsConfig, args: argparse.Namespace) -> ObjectDescriptor:
    async with S3Client(config) as client:
        if args.file == "-":
            return await client.upload(args.bucket, args.key, sys.stdin.buffer)
        return await client.fput_object(args.bucket, args.key, args.file)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the s3parts CLI.

    Loads configuration, applies CLI overrides, runs the command and prints
    the resulting ETag. Exits with status 1 on failure.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    if args.config is None:
        config = S3PartsConfig()
    else:
        try:
            config = load_config(args.config)
        except FileNotFoundError:
            logger.error("Config file not found: %s", args.config)
            sys.exit(1)
        except Exception as exc:
            logger.error("Failed to load config: %s", exc)
            sys.exit(1)

    # Apply CLI overrides
    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.log_format is not None:
        config.logging.format = args.log_format
    if args.part_size is not None:
        config.upload.part_size = args.part_size
    if args.concurrency is not None:
        config.upload.concurrency = args.concurrency
    if args.checksum is not None:
        config.upload.checksum_algorithm = args.checksum
    if args.resume is not None:
        config.upload.resume = args.resume

    configure_logging(level=config.logging.level, fmt=config.logging.format)

    try:
        descriptor = asyncio.run(_put(config, args))
    except S3PartsError as exc:
        logger.error("Upload failed: %s", exc)
        if exc.abort_error is not None:
            logger.error("Abort also failed: %s", exc.abort_error)
        sys.exit(1)
    except OSError as exc:
        logger.error("Cannot read %s: %s", args.file, exc)
        sys.exit(1)

    print(f"{descriptor.etag}\t{descriptor.size}\t{args.bucket}/{args.key}")


if __name__ == "__main__":
    main()
