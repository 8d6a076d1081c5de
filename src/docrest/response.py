"""Response envelopes returned by handlers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PageData(BaseModel):
    total: int = 0
    hits: list[dict[str, Any]] = Field(default_factory=list)


class Rsp(BaseModel):
    """Uniform response body.

    Handlers set ``code`` to the HTTP status; on the wire it becomes 0 for any
    status below 400.
    """

    code: int = 200
    msg: str = ""
    data: Any = None

    @property
    def status(self) -> int:
        return self.code

    def wire(self) -> dict[str, Any]:
        body = self.model_dump(mode="json")
        if body["data"] is None:
            del body["data"]
        if 100 <= self.code < 400:
            body["code"] = 0
        return body


def gen_rsp(code: int, msg: str, data: Any = None) -> Rsp:
    return Rsp(code=code, msg=msg, data=data)
