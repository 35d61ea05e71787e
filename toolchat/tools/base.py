"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from toolchat.models import ToolCategory, ToolDefinition


class Tool(ABC):
    """Base class for all chat tools.

    ``name`` is the function name offered to the model; ``id`` is the stable
    catalog identifier used for enablement and usage tracking.
    """

    id: str
    name: str
    display_name: str
    description: str
    category: ToolCategory = ToolCategory.UTILITY
    credential_name: str | None = None
    parameters_schema: dict[str, Any]

    @property
    def requires_credential(self) -> bool:
        return self.credential_name is not None

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            id=self.id,
            function_name=self.name,
            display_name=self.display_name,
            description=self.description,
            category=self.category,
            requires_credential=self.requires_credential,
            parameter_schema=self.parameters_schema,
        )

    @abstractmethod
    async def run(self, **kwargs: Any) -> dict[str, Any]:
        """Execute tool with validated arguments.

        Returns ``{"success": True, ...}`` or ``{"success": False, "error": ...}``.
        """


def failure(error: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": error, **extra}
