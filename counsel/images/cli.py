"""Command-line quickstart for the image-generation API.

Usage:
    counsel-image "a courtroom sketch of a tenant hearing" --out hearing.png
"""

import argparse
import os
import sys
from typing import List, Optional

import structlog

from ..core.config import settings
from .client import ImageClient, ImageGenerationError

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="counsel-image",
        description="Generate an image with the /v1/images/generations endpoint",
    )
    parser.add_argument("prompt", help="Text description of the image")
    parser.add_argument("--model", default=settings.image_model, help="Image model name")
    parser.add_argument("--size", default=settings.image_size, help="WIDTHxHEIGHT or auto")
    parser.add_argument("--out", default="image.png", help="Where to write the image")
    parser.add_argument("--base-url", default=settings.image_api_base_url, help="API base URL")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    api_key = os.getenv("OPENAI_API_KEY") or settings.openai_api_key
    if not api_key:
        print("Please set OPENAI_API_KEY environment variable", file=sys.stderr)
        return 2

    try:
        with ImageClient(api_key=api_key, base_url=args.base_url) as client:
            image = client.generate(args.prompt, model=args.model, size=args.size)
            path = client.save(image, args.out)
    except (ImageGenerationError, ValueError) as e:
        print(f"Image generation failed: {e}", file=sys.stderr)
        return 1

    print(path)
    if image.revised_prompt:
        print(f"Revised prompt: {image.revised_prompt}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
