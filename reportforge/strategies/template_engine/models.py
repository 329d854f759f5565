"""Template engine domain models.

Pydantic models specific to template analysis, tokenization and rendering.
These models are kept here to avoid circular imports with the API layer.
Field names are snake_case in Python and camelCase on the wire.
"""

import enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# EMUs per inch in OOXML drawing markup
EMU_PER_INCH = 914400


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VariableType(str, enum.Enum):
    """Kinds of template variables."""

    TEXT = "text"
    KML = "kml"
    IMAGE = "image"
    SELECT = "select"
    DATE = "date"
    CALCULATED = "calculated"


class ImageExtent(CamelModel):
    """Declared on-page size of an embedded picture, in EMUs."""

    cx: int = Field(ge=0, description="Width in EMUs")
    cy: int = Field(ge=0, description="Height in EMUs")

    def to_pixels(self, dpi: int = 96) -> tuple[int, int]:
        """Return the pixel box for this extent at ``dpi`` (never below 1x1)."""
        width = max(1, round(self.cx / EMU_PER_INCH * dpi))
        height = max(1, round(self.cy / EMU_PER_INCH * dpi))
        return width, height


class TemplateVariable(CamelModel):
    """A variable declared on an imported template."""

    id: str = Field(description="Stable identifier within the template")
    name: str = Field(min_length=1, description="Unique key; appears as {{name}} in the package")
    type: VariableType = Field(default=VariableType.TEXT)
    description: str | None = None
    source_text: str | None = Field(
        default=None, description="Original phrase located and replaced at tokenize time"
    )
    kml_field: str | None = None
    options: list[str] = Field(default_factory=list)
    expression: str | None = Field(default=None, description="Expression for calculated variables")
    text_templates: list[str] = Field(default_factory=list)
    image_rel_id: str | None = None
    image_target: str | None = Field(
        default=None, description="Media part replaced for direct image substitution"
    )
    image_extent: ImageExtent | None = None
    group_id: str | None = None
    is_required: bool = False
    tokenized: bool = False

    @property
    def anchor_text(self) -> str:
        """Literal text an anchor-replace insertion looks for."""
        if self.source_text and self.source_text.strip():
            return self.source_text
        return "{{" + self.name + "}}"


class VariableGroup(CamelModel):
    """Optional grouping of variables for data entry."""

    id: str
    name: str
    description: str | None = None
    order: int = 0


class DetectedToken(CamelModel):
    """A token found while analyzing a tokenized package."""

    id: str
    name: str


class MediaPlaceholder(CamelModel):
    """An embedded media part and its placement extent."""

    target: str = Field(description="Full part name, e.g. word/media/image1.png")
    extent: ImageExtent | None = None
    file_name: str


class TemplateAnalysis(CamelModel):
    """Result of the analyze operation."""

    variables: list[DetectedToken] = Field(default_factory=list)
    media: list[MediaPlaceholder] = Field(default_factory=list)
    total_paragraphs: int = 0


class TokenizationResult(CamelModel):
    """Result of injecting tokens into a package."""

    output_path: str
    variables: list[TemplateVariable]
    replacements: int = 0

    @property
    def untokenized(self) -> list[str]:
        """Names of variables whose phrase could not be found."""
        return [v.name for v in self.variables if not v.tokenized]
