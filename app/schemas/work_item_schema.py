import json
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.domain.exceptions import InvalidWorkItem


class WorkItem(BaseModel):
    """One image of one product waiting to be compressed.

    ``compressed_url`` is only set when the upload already happened and just
    the product update is left to do.
    """

    product_id: int
    image_url: str = Field(..., min_length=1)
    compressed_url: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    def to_body(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def from_body(cls, body: bytes) -> "WorkItem":
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise InvalidWorkItem(f"malformed JSON ({e})")
        if not isinstance(payload, dict):
            raise InvalidWorkItem("expected a JSON object")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise InvalidWorkItem(str(e.errors(include_url=False)))
