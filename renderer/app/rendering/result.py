from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from renderer.app.templates.models import TemplateScope


class RenderResult(BaseModel):
    """
    The completed output of one render request.

    Immutable. ``content_hash`` covers ``content`` exactly.
    """

    content: bytes = Field(repr=False)
    media_type: str
    file_extension: str

    template_id: str
    template_version: int
    template_scope: TemplateScope

    rendered_at: datetime
    content_hash: str
    request_id: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def size(self) -> int:
        return len(self.content)
