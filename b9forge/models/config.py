"""Run-scoped build context and resolution requests."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from b9forge.models.shared_image import BUILD_ID_PATTERN

BUILD_DATE_FORMAT = "%Y-%m-%d-%H:%M:%S"


def _now_build_date() -> str:
    return datetime.now(timezone.utc).strftime(BUILD_DATE_FORMAT)


class BuildContext(BaseModel):
    """Identity of one build invocation, shared by every artifact it produces.

    Created once per run and passed explicitly to the rule engine and the
    build collaborator.
    """

    model_config = ConfigDict(frozen=True)

    build_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:16], pattern=BUILD_ID_PATTERN)
    build_date: str = Field(default_factory=_now_build_date)


class ImageRequest(BaseModel):
    """A request to resolve the shared image ``name``.

    ``newer_than`` is the freshness requirement: a cached version with an
    older ``build_date`` does not satisfy the request.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    newer_than: str | None = None
