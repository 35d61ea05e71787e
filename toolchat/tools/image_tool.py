"""Image generation tool using Pollinations' prompt-to-image URLs."""

from __future__ import annotations

import random
from typing import Any
from urllib.parse import quote

from toolchat.tools.base import Tool

POLLINATIONS_URL = "https://image.pollinations.ai/prompt/{prompt}"

ASPECT_SIZES: dict[str, tuple[int, int]] = {
    "1:1": (1024, 1024),
    "4:3": (1024, 768),
    "16:9": (1280, 720),
}


class ImageGenerationTool(Tool):
    """Returns a rendered-on-request image URL for a text description."""

    id = "image_generation"
    name = "generate_image"
    display_name = "Image Generation"
    description = (
        'Generate an image from a detailed text description. Use this when the user asks to '
        '"draw", "generate an image", or "create a picture" of something.'
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "prompt": {
                "type": "string",
                "description": "Detailed description of the image to generate.",
            },
            "aspect_ratio": {
                "type": "string",
                "description": "The aspect ratio of the generated image.",
                "enum": list(ASPECT_SIZES),
            },
        },
        "required": ["prompt"],
    }

    def __init__(self, seed: int | None = None) -> None:
        self._seed = seed

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        prompt = str(kwargs["prompt"]).strip()
        aspect_ratio = kwargs.get("aspect_ratio") or "1:1"
        width, height = ASPECT_SIZES[aspect_ratio]
        seed = self._seed if self._seed is not None else random.randint(0, 2**31 - 1)
        url = (
            POLLINATIONS_URL.format(prompt=quote(prompt, safe=""))
            + f"?width={width}&height={height}&seed={seed}&nologo=true"
        )
        return {
            "success": True,
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "image_url": url,
        }
