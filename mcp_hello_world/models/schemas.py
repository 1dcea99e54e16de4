from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, model_validator

# Strict members keep `true` from being coerced to 1; ids echo back exactly as sent.
RpcId = Union[StrictStr, StrictInt, StrictFloat, None]


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    uptime_s: int
    timestamp: str
    version: str


class HandshakeRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    jsonrpc: str | None = None
    method: str | None = None
    params: Any = None
    id: RpcId = None


class HandshakeResult(BaseModel):
    message: str
    timestamp: str
    server: str
    version: str


class HandshakeError(BaseModel):
    code: int
    message: str
    data: str | None = None


class HandshakeEnvelope(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: RpcId = None
    result: HandshakeResult | None = None
    error: HandshakeError | None = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> HandshakeEnvelope:
        if (self.result is None) == (self.error is None):
            raise ValueError("A handshake envelope carries exactly one of result or error")
        return self

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.result is not None:
            payload["result"] = self.result.model_dump()
        else:
            payload["error"] = self.error.model_dump(exclude_none=True)
        return payload
