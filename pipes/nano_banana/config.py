from typing import Any, Dict, Literal

from pydantic import BaseModel, Field

from .models import FLASH_MODEL, AspectRatio, ModelName, OutputEncoding, Resolution


class Valves(BaseModel):
    # Credentials and endpoints
    CONNECTION_TYPE: Literal["official", "openai"] = Field(
        default="official",
        description="'official' calls the Gemini generateContent API, 'openai' an OpenAI-compatible chat/completions API.",
    )
    API_KEY: str = Field(default="", description="API key (x-goog-api-key for official, Bearer for openai)")
    API_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        description="Base URL of the OpenAI-compatible API. Should typically end with /",
    )
    NATIVE_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com",
        description="Base URL of the official Gemini API",
    )
    AUTH_CODE: str = Field(default="", description="Authorization code sent with the credentials.")
    EXPECTED_AUTH_CODE: str = Field(
        default="",
        description="When set, AUTH_CODE must match this value before any item is processed. Empty disables the check.",
    )
    # Logging
    ENABLE_LOGGING: bool = Field(default=False, description="Enable info/debug logs for this plugin. When False, only errors are logged.")
    # Per-item defaults, overridable through the item JSON
    MODEL: ModelName = Field(default=FLASH_MODEL, description="Default model (flash supports 3 reference images, pro 14)")
    ASPECT_RATIO: AspectRatio = Field(default="1:1", description="Default aspect ratio")
    RESOLUTION: Resolution = Field(default="1K", description="Default resolution, only used by the pro model")
    OUTPUT_FORMAT: OutputEncoding = Field(
        default="binary",
        description="Default output format: binary, base64, dataUrl, url or raw",
    )
    OUTPUT_PROPERTY_NAME: str = Field(default="data", description="Default output property name")
    THROW_ON_FAILURE: bool = Field(
        default=False,
        description="Fail the item when no image could be extracted instead of returning success=false.",
    )
    # Execution
    CONTINUE_ON_FAIL: bool = Field(
        default=True,
        description="Record failed items as {'error': message} and keep going instead of aborting the run.",
    )
    CONCURRENT_ITEMS: bool = Field(default=False, description="Process all items concurrently instead of one after another.")
    REFERENCE_IMAGE_DELIMITERS: str = Field(default="|\n", description="Characters separating reference images in a string")
    # HTTP client
    REQUEST_TIMEOUT: int = Field(default=600, description="Request timeout in seconds")

    def parameter_defaults(self) -> Dict[str, Any]:
        """Per-item parameter defaults keyed like the item JSON."""
        return {
            "model": self.MODEL,
            "aspectRatio": self.ASPECT_RATIO,
            "resolution": self.RESOLUTION,
            "outputFormat": self.OUTPUT_FORMAT,
            "outputPropertyName": self.OUTPUT_PROPERTY_NAME,
            "throwOnFailure": self.THROW_ON_FAILURE,
        }
