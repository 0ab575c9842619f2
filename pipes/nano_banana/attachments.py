"""Work items and binary attachments exchanged with the host."""

import base64
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, Field


class BinaryAttachment(BaseModel):
    data: bytes
    mime_type: str
    file_name: str = ""
    # Set when the host stored the bytes somewhere addressable
    url: Optional[str] = None

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def summary(self) -> Dict[str, Any]:
        """JSON-safe description without the payload."""
        return {
            "mimeType": self.mime_type,
            "fileName": self.file_name,
            "fileSize": len(self.data),
            "url": self.url,
        }


class WorkItem(BaseModel):
    index: int = 0
    json_data: Dict[str, Any] = Field(default_factory=dict)
    binary: Dict[str, BinaryAttachment] = Field(default_factory=dict)

    def to_output(self) -> Dict[str, Any]:
        output: Dict[str, Any] = {"json": self.json_data}
        if self.binary:
            output["binary"] = {key: value.summary() for key, value in self.binary.items()}
        return output


AttachmentRegistrar = Callable[[bytes, str, str], Awaitable[BinaryAttachment]]


async def prepare_binary_data(data: bytes, file_name: str, mime_type: str) -> BinaryAttachment:
    """Default registration: keep the bytes on the result item."""
    return BinaryAttachment(data=data, mime_type=mime_type, file_name=file_name)
