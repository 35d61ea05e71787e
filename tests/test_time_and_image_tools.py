from datetime import datetime
from urllib.parse import parse_qs, urlparse

import pytest

from toolchat.tools.image_tool import ImageGenerationTool
from toolchat.tools.time_tool import GetCurrentTimeTool


@pytest.mark.asyncio
async def test_current_time_defaults_to_utc():
    result = await GetCurrentTimeTool().run()

    assert result["success"] is True
    assert result["timezone"] == "UTC"
    assert datetime.fromisoformat(result["iso"]).utcoffset().total_seconds() == 0


@pytest.mark.asyncio
async def test_current_time_in_named_zone():
    result = await GetCurrentTimeTool().run(timezone="Asia/Tokyo")

    assert datetime.fromisoformat(result["iso"]).utcoffset().total_seconds() == 9 * 3600


@pytest.mark.asyncio
async def test_invalid_timezone_fails():
    result = await GetCurrentTimeTool().run(timezone="Mars/Olympus")

    assert result == {"success": False, "error": "Invalid timezone: Mars/Olympus"}


@pytest.mark.asyncio
async def test_image_url_encodes_prompt_and_size():
    result = await ImageGenerationTool(seed=42).run(prompt="a red fox / snow", aspect_ratio="16:9")

    url = urlparse(result["image_url"])
    assert url.netloc == "image.pollinations.ai"
    assert url.path == "/prompt/a%20red%20fox%20%2F%20snow"
    assert parse_qs(url.query) == {"width": ["1280"], "height": ["720"], "seed": ["42"], "nologo": ["true"]}
    assert result["aspect_ratio"] == "16:9"


@pytest.mark.asyncio
async def test_image_defaults_to_square():
    result = await ImageGenerationTool(seed=1).run(prompt="cat")

    assert "width=1024&height=1024" in result["image_url"]
