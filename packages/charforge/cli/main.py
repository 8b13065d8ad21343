"""Command-line interface for charforge.

Generates a character image (or recalls it from the local cache) and prints
its reference on stdout. Progress goes to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
import sys
from typing import Any

from pydantic import ValidationError
from rich.console import Console

from charforge.core.config.loader import load_client_config
from charforge.core.config.models import ClientConfig
from charforge.core.generation.client import GenerationClient, create_cache
from charforge.core.generation.errors import ClassifiedError, ErrorKind, user_message
from charforge.core.generation.models import (
    Accessory,
    AgeGroup,
    ClothingColor,
    ClothingItem,
    EyeColor,
    Gender,
    HairColor,
    HairStyle,
    SkinTone,
)
from charforge.core.utils.logging import configure_logging

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)

# CLI flag -> request field, for the single-valued attributes
_ATTRIBUTE_FLAGS = {
    "gender": "gender",
    "age_group": "ageGroup",
    "skin_tone": "skinTone",
    "hair_style": "hairStyle",
    "hair_color": "hairColor",
    "clothing": "clothing",
    "clothing_color": "clothingColor",
    "eye_color": "eyeColor",
}


def _choices(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


def request_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Build the request mapping from parsed ``generate`` arguments."""
    request: dict[str, Any] = {}
    for dest, field in _ATTRIBUTE_FLAGS.items():
        value = getattr(args, dest, None)
        if value is not None:
            request[field] = value
    if args.accessory:
        request["accessories"] = args.accessory
    request["transparent"] = not args.opaque
    request["cache"] = not args.no_cache
    return request


def _load_config(args: argparse.Namespace) -> ClientConfig | None:
    overrides: dict[str, Any] = {}
    if getattr(args, "base_url", None):
        overrides["base_url"] = args.base_url
    try:
        return load_client_config(Path(args.config) if args.config else None, **overrides)
    except FileNotFoundError as e:
        console.print(f"[red]ERROR: {e}[/red]")
    except (ValueError, ValidationError) as e:
        console.print(f"[red]ERROR: Invalid configuration: {e}[/red]")
    return None


def _report_failure(error: ClassifiedError) -> None:
    console.print(f"[red]ERROR: {user_message(error)}[/red]")
    if error.kind is ErrorKind.AUTHENTICATION_REQUIRED:
        console.print("Set CHARFORGE_API_KEY or add api_key to your config file.")
    logger.debug("Generation failed: %s", error)


async def generate_async(config: ClientConfig, request: dict[str, Any]) -> int:
    """Run one generation and print the image reference.

    Returns:
        Process exit code
    """

    def on_status(status: str) -> None:
        err_console.print(f"[dim]{status}[/dim]")

    try:
        async with GenerationClient(config) as client:
            result = await client.generate_result(request, on_status=on_status)
    except ClassifiedError as e:
        _report_failure(e)
        return 1

    console.print(result.image, markup=False, highlight=False, soft_wrap=True)
    source = "cache" if result.cached else "service"
    err_console.print(f"[green]✅ Image ready[/green] (from {source})")
    return 0


async def clear_cache_async(config: ClientConfig) -> int:
    """Remove all cached images. Needs no API key."""
    cache = create_cache(config.cache)
    try:
        await cache.clear()
    except OSError as e:
        console.print(f"[red]ERROR: Could not clear cache: {e}[/red]")
        return 1
    finally:
        await cache.close()
    console.print(f"[green]✅ Cache cleared[/green] ({config.cache.directory})")
    return 0


def run_generate(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 1
    if args.no_cache:
        logger.debug("Cache bypass requested for this call")

    request = request_from_args(args)
    try:
        return asyncio.run(generate_async(config, request))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return 130


def run_clear_cache(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 1
    return asyncio.run(clear_cache_async(config))


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for CLI."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to config file (.json, .yaml, .yml)")
    common.add_argument("--base-url", help="Override the generation service base URL")
    common.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    common.add_argument("--log-json", action="store_true", help="Structured JSON logs")

    p = argparse.ArgumentParser(
        prog="charforge",
        description="charforge - cache-aware CharacterForge image generation",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    gen = sub.add_parser("generate", parents=[common], help="Generate a character image")
    gen.add_argument("--gender", required=True, choices=_choices(Gender))
    gen.add_argument("--age-group", choices=_choices(AgeGroup))
    gen.add_argument("--skin-tone", choices=_choices(SkinTone))
    gen.add_argument("--hair-style", choices=_choices(HairStyle))
    gen.add_argument("--hair-color", choices=_choices(HairColor))
    gen.add_argument("--clothing", choices=_choices(ClothingItem))
    gen.add_argument("--clothing-color", choices=_choices(ClothingColor))
    gen.add_argument("--eye-color", choices=_choices(EyeColor))
    gen.add_argument(
        "--accessory",
        action="append",
        choices=_choices(Accessory),
        help="Accessory to add (repeatable)",
    )
    gen.add_argument(
        "--opaque", action="store_true", help="Render with a background instead of transparency"
    )
    gen.add_argument("--no-cache", action="store_true", help="Skip the local cache for this call")

    sub.add_parser("clear-cache", parents=[common], help="Remove all cached images")

    return p


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    p = build_arg_parser()
    args = p.parse_args(argv)

    configure_logging(level=args.log_level, structured=args.log_json)

    if args.cmd == "generate":
        return run_generate(args)
    if args.cmd == "clear-cache":
        return run_clear_cache(args)

    p.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
