"""Data model shared by the resolver, builders, parsers and projector."""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

FLASH_MODEL = "gemini-2.5-flash-image"
PRO_MODEL = "gemini-3-pro-image-preview"

# Reference image limits per model
MAX_REFERENCE_IMAGES: Dict[str, int] = {
    FLASH_MODEL: 3,
    PRO_MODEL: 14,
}

ModelName = Literal["gemini-2.5-flash-image", "gemini-3-pro-image-preview"]
Operation = Literal["textToImage", "imageToImage"]
AspectRatio = Literal["1:1", "16:9", "2:3", "21:9", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16"]
Resolution = Literal["1K", "2K", "4K"]
OutputEncoding = Literal["binary", "base64", "dataUrl", "url", "raw"]

DEFAULT_MIME_TYPE = "image/png"


def max_images(model: str) -> int:
    return MAX_REFERENCE_IMAGES[model]


class CanonicalImage(BaseModel):
    """Reference image as sent upstream: a mime type plus base64 payload."""

    model_config = ConfigDict(frozen=True)

    mime_type: str
    data: str

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    model: ModelName
    aspect_ratio: AspectRatio = "1:1"
    resolution: Resolution = "1K"
    reference_images: List[CanonicalImage] = Field(default_factory=list)

    @property
    def is_pro(self) -> bool:
        return self.model == PRO_MODEL

    def image_config(self) -> Dict[str, Any]:
        """Aspect ratio always, image size only for the pro model."""
        config: Dict[str, Any] = {"aspectRatio": self.aspect_ratio}
        if self.is_pro:
            config["imageSize"] = self.resolution
        return config


class NativeResponse(BaseModel):
    """Body returned by the native ``generateContent`` endpoint."""

    protocol: Literal["native"] = "native"
    body: Any = None


class CompatResponse(BaseModel):
    """Body returned by an OpenAI-compatible ``chat/completions`` endpoint."""

    protocol: Literal["compat"] = "compat"
    body: Any = None


UpstreamResponse = Union[NativeResponse, CompatResponse]


class ExtractedImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["base64", "url"]
    data: str
    mime_type: str = DEFAULT_MIME_TYPE


class ParseResult(BaseModel):
    images: List[ExtractedImage] = Field(default_factory=list)
    text: str = ""

    @property
    def count(self) -> int:
        return len(self.images)


class MaterializedImage(BaseModel):
    index: int
    value: str
    mime_type: str = DEFAULT_MIME_TYPE


class SkippedImage(BaseModel):
    index: int
    reason: str


ProjectedImage = Union[MaterializedImage, SkippedImage]


class ProjectedResult(BaseModel):
    json_data: Dict[str, Any] = Field(default_factory=dict)
    binary: Dict[str, Any] = Field(default_factory=dict)
    skipped: List[SkippedImage] = Field(default_factory=list)


class NodeParameters(BaseModel):
    """Per-item parameters, read by their camelCase names from the item JSON."""

    model_config = ConfigDict(populate_by_name=True)

    operation: Operation = "textToImage"
    model: ModelName = FLASH_MODEL
    prompt: str = ""
    reference_images: Optional[Union[str, List[Any]]] = Field(default=None, alias="referenceImages")
    aspect_ratio: AspectRatio = Field(default="1:1", alias="aspectRatio")
    resolution: Resolution = "1K"
    output_format: OutputEncoding = Field(default="binary", alias="outputFormat")
    output_property_name: str = Field(default="data", alias="outputPropertyName")
    throw_on_failure: bool = Field(default=False, alias="throwOnFailure")
    output_file_name: Optional[str] = Field(default=None, alias="outputFileName")
