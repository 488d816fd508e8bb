"""
Stage actions and receipts.

Every collaborator call the stage controller makes is one ``Action``:
a package, the stage it serves, the adapter that performs it, and the
adapter's params. The adapter answers with a ``Receipt``.

Receipt status is the collaborator outcome the stage logic branches on:

    ok       the command succeeded, or the fetcher wrote a new archive
    skipped  the fetcher found the archive already in place
    failed   non-zero exit, timeout, missing source, checksum mismatch
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

ReceiptStatus = Literal["ok", "skipped", "failed"]


class Action(BaseModel):
    """One collaborator call on behalf of a package stage."""

    package: str
    stage: str
    adapter: str                    # "shell" or "remote_file"
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> str:
        """``<package>:<stage>``, the key mocks and logs use."""
        return f"{self.package}:{self.stage}"

    @property
    def command(self) -> str:
        return str(self.params.get("command", ""))


class Receipt(BaseModel):
    """What a collaborator reported for one action."""

    adapter: str
    action_id: str
    status: ReceiptStatus = "ok"
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    # return_code, cwd, dest, size, ...
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, output=output, **kwargs)

    @classmethod
    def failure(cls, adapter: str, action_id: str, error: str, **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, adapter: str, action_id: str, reason: str = "", **kwargs: Any) -> Receipt:
        """Nothing needed doing; ``reason`` becomes the output."""
        return cls(adapter=adapter, action_id=action_id, status="skipped", output=reason, **kwargs)
