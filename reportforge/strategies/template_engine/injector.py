"""Template injector strategy.

Replaces source phrases in an uploaded Word package with ``{{name}}``
tokens while preserving the surrounding run formatting, then verifies
which variables actually made it into the package.
"""

import logging
from pathlib import Path
from typing import Any

from reportforge.interfaces.errors import PackageError
from reportforge.interfaces.template import BaseTemplateInjector
from reportforge.strategies.template_engine.models import TemplateVariable, TokenizationResult
from reportforge.strategies.template_engine.package import DocxPackage
from reportforge.strategies.template_engine.text_runs import (
    XmlTextPart,
    commit_parts,
    iter_text_parts,
)

logger = logging.getLogger(__name__)


def token_for(name: str) -> str:
    """Literal token text for a variable name."""
    return "{{" + name + "}}"


def inject_token(part: XmlTextPart, name: str, source_text: str) -> int:
    """Replace every occurrence of ``source_text`` in one part with ``{{name}}``.

    The index is rebuilt after each replacement because node contents
    (and so every later offset) shift.

    Returns:
        Number of occurrences replaced.
    """
    if not name or not source_text:
        return 0

    token = token_for(name)
    index = part.index
    replaced = 0
    search_from = 0
    while True:
        start = index.find(source_text, search_from)
        if start == -1:
            break
        index.replace_range(start, start + len(source_text), token)
        replaced += 1
        # Skip past the token so a phrase contained in its own name can't loop
        search_from = start + len(token)

    if replaced:
        part.modified = True
    return replaced


def verify_tokens(package: DocxPackage, names: list[str]) -> dict[str, bool]:
    """Which of ``names`` appear as a literal ``{{name}}`` in the package text."""
    texts = [part.index.text for part in iter_text_parts(package)]
    return {name: any(token_for(name) in text for text in texts) for name in names}


class TemplateInjector(BaseTemplateInjector):
    """Injects ``{{name}}`` tokens into Word templates.

    Works on every text-bearing part (body, headers, footers, notes) so a
    phrase repeated in a header is tokenized along with the body.
    """

    async def inject_tags(
        self,
        file_path: str,
        variables: list[Any],
        output_path: str | None = None,
    ) -> TokenizationResult:
        """Inject tokens into the template.

        A phrase that cannot be found verbatim (autocorrect, smart quotes)
        is not an error: the variable keeps ``tokenized=False`` and the
        template is still written.

        Args:
            file_path: Path to the original template.
            variables: TemplateVariable objects (or dicts) with name and source text.
            output_path: Where to save the tokenized template (optional).

        Returns:
            TokenizationResult with the verified variable list.

        Raises:
            FileNotFoundError: If template file doesn't exist.
            PackageError: If the package cannot be read or written.
        """
        logger.info(f"Starting token injection: {file_path}")

        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Template file not found: {file_path}")

        parsed = [
            v if isinstance(v, TemplateVariable) else TemplateVariable.model_validate(v)
            for v in variables
        ]

        try:
            package = DocxPackage.open(path)
            parts = list(iter_text_parts(package))

            replacement_count = 0
            for var in parsed:
                if not var.source_text:
                    continue
                for part in parts:
                    count = inject_token(part, var.name, var.source_text)
                    if count:
                        logger.debug(
                            f"Tokenized {count} occurrence(s) of {var.source_text!r} "
                            f"as {token_for(var.name)} in {part.name}"
                        )
                    replacement_count += count

            for part in parts:
                if part.index.normalize_token_whitespace():
                    part.modified = True

            commit_parts(package, parts)

            if output_path is None:
                output_path = str(path.parent / f"{path.stem}_tokenized{path.suffix}")
            package.save(output_path)

        except PackageError:
            raise
        except Exception as e:
            logger.error(f"Token injection failed: {e}", exc_info=True)
            raise PackageError("Token injection failed", detail=str(e)) from e

        verified = verify_tokens(package, [v.name for v in parsed])
        result_vars = [v.model_copy(update={"tokenized": verified[v.name]}) for v in parsed]

        result = TokenizationResult(
            output_path=output_path,
            variables=result_vars,
            replacements=replacement_count,
        )
        if result.untokenized:
            logger.warning(f"Variables not found in template text: {result.untokenized}")
        logger.info(
            f"Tokenized template saved: {output_path} ({replacement_count} replacements)"
        )
        return result

    async def verify(self, file_path: str, variables: list[TemplateVariable]) -> list[TemplateVariable]:
        """Re-check tokenization flags for an already tokenized package.

        Unreadable packages mark every variable as not tokenized.
        """
        try:
            package = DocxPackage.open(file_path)
            verified = verify_tokens(package, [v.name for v in variables])
        except (FileNotFoundError, PackageError) as e:
            logger.warning(f"Token verification skipped for {file_path}: {e}")
            verified = {}
        return [v.model_copy(update={"tokenized": verified.get(v.name, False)}) for v in variables]

    @property
    def supported_extensions(self) -> set[str]:
        """Return supported file extensions."""
        return {".docx"}
