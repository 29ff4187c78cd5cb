"""Format sniffing: pick the format module that owns a file.

Detection only looks at the file extension and a fixed-size head window, so
its cost never depends on the size of the file. Required-field detection is
a textual heuristic over that window, not JSON validation: it may accept a
file where the field name merely appears in a string, and it may miss a
field that is formatted unusually or lies beyond the window.
"""

import re
from pathlib import Path

from chatlog_ingest.logging import get_logger
from chatlog_ingest.models import FormatDiagnosis, FormatFeature, FormatMatchCheck
from chatlog_ingest.parser.base import FormatModule, Parser
from chatlog_ingest.parser.utils import HEAD_SIZE, get_extension, read_file_head

logger = get_logger("sniffer")

JSON_EXTENSIONS = (".json", ".jsonl")


def _read_head(path: Path | str) -> str:
    """Read the head window; an unreadable file sniffs as empty."""
    try:
        return read_file_head(path, HEAD_SIZE)
    except OSError as exc:
        logger.warning("Cannot read file head: path=%s error=%s", path, exc)
        return ""


def field_present(head: str, field: str) -> bool:
    """Check whether a required field name appears in the head window.

    ``"a.b"`` style names look for ``"a"`` followed somewhere later by a
    ``"b":`` key. Plain names look for a ``"name":`` key. Either way the
    quoted name on its own is also accepted.
    """
    key_pattern = '"' + re.escape(field).replace(r"\.", r'"\s*:\s*.*"', 1) + r'"\s*:'
    return re.search(key_pattern, head) is not None or f'"{field}"' in head


def missing_fields(head: str, fields: tuple[str, ...]) -> list[str]:
    return [f for f in fields if not field_present(head, f)]


def check_feature(feature: FormatFeature, ext: str, head: str) -> FormatMatchCheck:
    """Run every matching step for one format without short-circuiting.

    Args:
        feature: Format to check
        ext: Lower-cased file extension including the dot
        head: Head window content

    Returns:
        FormatMatchCheck with per-step results (None for steps the format
        doesn't declare, or that were skipped because the extension failed)
    """
    check = FormatMatchCheck(
        format_id=feature.id,
        format_name=feature.name,
        extension_match=ext in feature.extensions,
    )
    if not check.extension_match:
        return check

    signatures = feature.signatures
    if signatures.head:
        check.head_signature_match = any(p.search(head) for p in signatures.head)
    if signatures.required_fields:
        check.missing_fields = missing_fields(head, signatures.required_fields)
        check.required_fields_match = not check.missing_fields
    if signatures.field_patterns:
        check.field_patterns_match = all(p.search(head) for p in signatures.field_patterns.values())

    check.full_match = (
        check.head_signature_match is not False
        and check.required_fields_match is not False
        and check.field_patterns_match is not False
    )
    return check


def matches_feature(feature: FormatFeature, ext: str, head: str) -> bool:
    """Check a format in order, stopping at the first failing step."""
    if ext not in feature.extensions:
        return False

    signatures = feature.signatures
    if signatures.head and not any(p.search(head) for p in signatures.head):
        return False
    if signatures.required_fields and missing_fields(head, signatures.required_fields):
        return False
    for pattern in signatures.field_patterns.values():
        if not pattern.search(head):
            return False
    return True


def build_suggestion(ext: str, partial_matches: list[FormatMatchCheck], head: str) -> str:
    """Explain why no format matched, naming the closest candidate."""
    if not partial_matches:
        return f'No format matched: no registered format accepts extension "{ext}"; check that the file type is correct'

    closest = partial_matches[0]
    not_json = ext in JSON_EXTENSIONS and not head.strip().startswith(("{", "["))

    issues: list[str] = []
    if not_json:
        issues.append("content is not valid JSON")
    if closest.head_signature_match is False:
        issues.append("header signature does not match")
    if closest.missing_fields:
        issues.append(f"missing required fields: {', '.join(closest.missing_fields)}")
    if closest.field_patterns_match is False:
        issues.append("field values do not match")

    if not_json and len(issues) == 1:
        return f'No format matched this "{ext}" file: content is not valid JSON'
    if issues:
        return (
            f'No format matched this "{ext}" file. It looks closest to '
            f"{closest.format_name}, but: {'; '.join(issues)}"
        )

    return (
        f'No format matched this "{ext}" file: extension matches {closest.format_name} '
        "but the content structure is not as expected"
    )


class FormatSniffer:
    """Ordered registry of format modules.

    Modules are kept sorted ascending by priority; formats with equal
    priority keep their registration order. Registration is expected to
    finish before any sniffing starts.
    """

    def __init__(self) -> None:
        self._modules: list[FormatModule] = []

    def register(self, module: FormatModule) -> None:
        """Register a format module. Duplicate ids are not rejected."""
        self._modules.append(module)
        self._modules.sort(key=lambda m: m.feature.priority)

    def register_all(self, modules: list[FormatModule]) -> None:
        for module in modules:
            self.register(module)

    def get_module(self, path: Path | str) -> FormatModule | None:
        """Return the first module whose format fully matches ``path``."""
        ext = get_extension(path)
        head = _read_head(path)
        for module in self._modules:
            if matches_feature(module.feature, ext, head):
                return module
        return None

    def sniff(self, path: Path | str) -> FormatFeature | None:
        """Detect the format of a file.

        Args:
            path: File to inspect

        Returns:
            The matching FormatFeature, or None if no format matches
        """
        module = self.get_module(path)
        return module.feature if module else None

    def get_parser(self, path: Path | str) -> Parser | None:
        module = self.get_module(path)
        return module.parser if module else None

    def get_parser_by_id(self, format_id: str) -> Parser | None:
        """Look up a parser by format id, bypassing sniffing."""
        for module in self._modules:
            if module.feature.id == format_id:
                return module.parser
        return None

    def get_supported_formats(self) -> list[FormatFeature]:
        return [m.feature for m in self._modules]

    def diagnose(self, path: Path | str) -> FormatDiagnosis:
        """Explain how a file matches, or fails to match, every format.

        Always returns a result, even for unreadable files (which are
        diagnosed against an empty head window).

        Args:
            path: File to inspect

        Returns:
            FormatDiagnosis with per-format checks, partial matches (extension
            matched but something else failed) and a suggestion
        """
        ext = get_extension(path)
        head = _read_head(path)

        checks: list[FormatMatchCheck] = []
        partial_matches: list[FormatMatchCheck] = []
        matched: FormatFeature | None = None

        for module in self._modules:
            check = check_feature(module.feature, ext, head)
            checks.append(check)
            if check.full_match:
                if matched is None:
                    matched = module.feature
            elif check.extension_match:
                partial_matches.append(check)

        if matched is not None:
            suggestion = f"Recognized as {matched.name}"
        else:
            suggestion = build_suggestion(ext, partial_matches, head)

        return FormatDiagnosis(
            recognized=matched is not None,
            matched_format=matched,
            checks=checks,
            partial_matches=partial_matches,
            suggestion=suggestion,
        )
