"""
Shared types: auth components, detection results, the AI response contract
and the /detect payloads.

Wire names are camelCase (``detectionMethod``, ``locatorHint``); Python code
uses the snake_case attribute names. Dump with ``by_alias=True``.
"""
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class AuthType(str, Enum):
    TRADITIONAL = "traditional"
    OAUTH = "oauth"
    PASSWORDLESS = "passwordless"


class DetectionMethod(str, Enum):
    AI = "ai"
    PATTERN = "pattern"
    HYBRID = "hybrid"
    NONE = "none"


class AuthDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fields: Optional[list[str]] = None
    providers: Optional[list[str]] = None
    method: Optional[str] = None
    # Older prompts asked for playwrightSelector / extractionNote
    locator_hint: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("locatorHint", "playwrightSelector", "selector", "locator_hint"),
        serialization_alias="locatorHint",
    )
    note: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("note", "extractionNote"),
    )


class AuthComponent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: AuthType
    snippet: Optional[str] = None
    details: AuthDetails = Field(default_factory=AuthDetails)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class DetectionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    url: str
    found: bool = False
    components: list[AuthComponent] = Field(default_factory=list)
    detection_method: DetectionMethod = Field(
        default=DetectionMethod.NONE,
        validation_alias=AliasChoices("detectionMethod", "detection_method"),
        serialization_alias="detectionMethod",
    )
    error: Optional[str] = None

    @model_validator(mode="after")
    def _enforce_invariants(self):
        if not self.success:
            self.components = []
        self.found = len(self.components) > 0
        return self

    @classmethod
    def failure(cls, url: str, error: str) -> "DetectionResult":
        return cls(success=False, url=url, error=error)


class AIDetectionResponse(BaseModel):
    """What the model is asked to return. Validated before anything uses it."""
    model_config = ConfigDict(extra="ignore")

    found: bool = False
    components: list[AuthComponent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# HTTP payloads
# ---------------------------------------------------------------------------

class DetectRequest(BaseModel):
    url: Optional[str] = None


class DetectResponse(DetectionResult):
    page_title: Optional[str] = Field(default=None, serialization_alias="pageTitle")
    screenshot: Optional[str] = None
    cached: bool = False
