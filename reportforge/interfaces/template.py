"""Template analysis, tokenization and rendering interfaces.

Defines abstract base classes for the import path (analyze, tokenize)
and the generation path (render) of the document-assembly engine.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any


class BaseTemplateAnalyzer(ABC):
    """Abstract base class for template analysis strategies.

    Scans an already tokenized package for ``{{name}}`` tokens and
    embedded media placeholders without persisting anything.
    """

    @abstractmethod
    async def analyze(self, file_path: str) -> Any:
        """Analyze a package to enumerate its tokens and media.

        Args:
            file_path: Path to the Word package.

        Returns:
            A TemplateAnalysis with tokens and media placeholders.

        Raises:
            FileNotFoundError: If file doesn't exist.
            PackageError: If the archive cannot be read.
        """

    @property
    @abstractmethod
    def supported_extensions(self) -> set[str]:
        """Return supported file extensions."""


class BaseTemplateInjector(ABC):
    """Abstract base class for token injection strategies.

    Replaces source phrases with ``{{name}}`` tokens in a Word package
    and reports which variables were tokenized.
    """

    @abstractmethod
    async def inject_tags(
        self,
        file_path: str,
        variables: list[Any],
        output_path: str | None = None,
    ) -> Any:
        """Inject tokens into the template.

        Args:
            file_path: Path to the original template.
            variables: Variables carrying a name and a source phrase.
            output_path: Where to save the tokenized template (optional).

        Returns:
            A TokenizationResult naming the output path and verified variables.

        Raises:
            PackageError: If the package cannot be read or written.
        """


class BaseTemplateRenderer(ABC):
    """Abstract base class for value substitution strategies."""

    @abstractmethod
    def build_substitutions(
        self,
        variables: list[Any],
        values: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Turn caller-provided values into the final substitution map.

        Args:
            variables: The template's variable definitions.
            values: Raw values keyed by variable name.

        Returns:
            Mapping of token name to display value (None renders a placeholder).
        """

    @abstractmethod
    def render(self, package: Any, substitutions: Mapping[str, Any]) -> Any:
        """Substitute every token of the package in place.

        Args:
            package: An open DocxPackage.
            substitutions: Output of ``build_substitutions``.

        Returns:
            The same package, filled.

        Raises:
            RenderingError: If token syntax is malformed or substitution fails.
        """
