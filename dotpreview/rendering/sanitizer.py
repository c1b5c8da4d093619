"""Strip active content from renderer SVG before it reaches a display.

The markup is parsed into an ElementTree with expat configured to refuse
entity declarations, internal DTD subsets and external entities, cleaned
on the tree and serialised again.  Nothing here falls back to the input
text: a document that cannot be parsed is rejected.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
from xml.etree import ElementTree
from xml.parsers import expat

from ..errors import DotPreviewError

logger = logging.getLogger(__name__)

FORBIDDEN_ELEMENTS = frozenset(
    {
        "script",
        "foreignobject",
        "iframe",
        "frame",
        "frameset",
        "object",
        "embed",
        "applet",
        "audio",
        "video",
        "source",
        "track",
        "link",
        "base",
        "style",
        "meta",
        "handler",
        "listener",
    }
)
ANIMATION_ELEMENTS = frozenset({"set", "animate", "animatemotion", "animatetransform"})
URL_ATTRIBUTES = frozenset({"href", "src"})

_CONTROL_CHARS = re.compile(r"[\x00-\x20\x7f]+")
_SAFE_DATA_URI = re.compile(r"^data:image/(?:png|jpe?g|gif|webp)[;,]", re.IGNORECASE)
_URL_FUNCTION = re.compile(r"url\s*\(\s*(['\"]?)(.*?)\1\s*\)", re.IGNORECASE | re.DOTALL)
_CSS_EXPRESSION = re.compile(r"expression\s*\(", re.IGNORECASE)
_CSS_IMPORT = re.compile(r"@import[^;]*;?", re.IGNORECASE)


class SanitizationError(DotPreviewError, ValueError):
    """Raised when markup cannot be parsed or is unsafe to parse."""


@dataclass
class SanitizeReport:
    removed_elements: int = 0
    removed_attributes: int = 0
    rewritten_attributes: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.removed_elements or self.removed_attributes or self.rewritten_attributes)


def _local_name(name: str) -> str:
    if "}" in name:
        name = name.rsplit("}", 1)[1]
    return name.rsplit(":", 1)[-1].lower()


def _refuse_doctype(name: str, system_id: Optional[str], public_id: Optional[str], has_internal_subset: int) -> None:
    if has_internal_subset:
        raise SanitizationError("SVG with an internal DTD subset is not accepted")


def _refuse_entity(name: str, *_: object) -> None:
    raise SanitizationError(f"Entity declaration '{name}' is not accepted")


def _refuse_external(context: object, base: object, system_id: object, public_id: object) -> int:
    raise SanitizationError(f"External entity reference ({system_id}) is not accepted")


def parse_markup(markup: Union[str, bytes]) -> ElementTree.Element:
    """Parse ``markup`` with DTD loading and entity expansion disabled."""

    builder = ElementTree.TreeBuilder()
    parser = expat.ParserCreate()
    parser.SetParamEntityParsing(expat.XML_PARAM_ENTITY_PARSING_NEVER)
    parser.buffer_text = True
    parser.StartElementHandler = builder.start
    parser.EndElementHandler = builder.end
    parser.CharacterDataHandler = builder.data
    parser.StartDoctypeDeclHandler = _refuse_doctype
    parser.EntityDeclHandler = _refuse_entity
    parser.UnparsedEntityDeclHandler = _refuse_entity
    parser.ExternalEntityRefHandler = _refuse_external
    parser.SkippedEntityHandler = lambda name, is_parameter_entity: None
    try:
        parser.Parse(markup, True)
        return builder.close()
    except expat.ExpatError as exc:
        raise SanitizationError(f"Malformed SVG: {exc}") from exc


def is_safe_reference(value: str) -> bool:
    candidate = _CONTROL_CHARS.sub("", value or "")
    if candidate.startswith("#"):
        return True
    return bool(_SAFE_DATA_URI.match(candidate))


def _neutralize_urls(value: str) -> str:
    def _replace(match: "re.Match[str]") -> str:
        target = match.group(2)
        if _CONTROL_CHARS.sub("", target).startswith("#"):
            return match.group(0)
        return "none"

    return _URL_FUNCTION.sub(_replace, value)


def clean_style(value: str) -> Optional[str]:
    """Return a neutralised inline style, or ``None`` to drop it."""

    if "\\" in value:
        # CSS escapes can hide url()/expression() from the patterns below
        return None
    cleaned = _CSS_IMPORT.sub("", value)
    cleaned = _CSS_EXPRESSION.sub("(", cleaned)
    return _neutralize_urls(cleaned)


def _is_forbidden(element: ElementTree.Element) -> bool:
    local = _local_name(element.tag)
    if local in FORBIDDEN_ELEMENTS:
        return True
    if local in ANIMATION_ELEMENTS:
        target = _local_name(element.get("attributeName", ""))
        return target in URL_ATTRIBUTES or target.startswith("on")
    return False


def _clean_attributes(element: ElementTree.Element, report: SanitizeReport) -> None:
    for name in list(element.attrib):
        local = _local_name(name)
        value = element.attrib[name]
        if local.startswith("on"):
            del element.attrib[name]
            report.removed_attributes += 1
        elif local in URL_ATTRIBUTES:
            if not is_safe_reference(value):
                del element.attrib[name]
                report.removed_attributes += 1
        elif local == "style":
            cleaned = clean_style(value)
            if cleaned is None:
                del element.attrib[name]
                report.removed_attributes += 1
            elif cleaned != value:
                element.set(name, cleaned)
                report.rewritten_attributes += 1
        elif "url(" in value.lower():
            cleaned = _neutralize_urls(value)
            if cleaned != value:
                element.set(name, cleaned)
                report.rewritten_attributes += 1


def clean_tree(root: ElementTree.Element) -> SanitizeReport:
    if _local_name(root.tag) != "svg":
        raise SanitizationError(f"Expected an <svg> root element, got <{root.tag}>")
    report = SanitizeReport()
    _clean_attributes(root, report)
    stack: List[ElementTree.Element] = [root]
    while stack:
        parent = stack.pop()
        for child in list(parent):
            if _is_forbidden(child):
                parent.remove(child)
                report.removed_elements += 1
                continue
            _clean_attributes(child, report)
            stack.append(child)
    return report


def sanitize_svg_with_report(markup: Union[str, bytes]) -> Tuple[str, SanitizeReport]:
    root = parse_markup(markup)
    report = clean_tree(root)
    if report.changed:
        logger.info(
            "Sanitized SVG: removed %d element(s), %d attribute(s); rewrote %d attribute(s)",
            report.removed_elements,
            report.removed_attributes,
            report.rewritten_attributes,
        )
    return ElementTree.tostring(root, encoding="unicode"), report


def sanitize_svg(markup: Union[str, bytes]) -> str:
    """Return ``markup`` with scripts, handlers and external references removed."""

    cleaned, _ = sanitize_svg_with_report(markup)
    return cleaned


__all__ = [
    "SanitizationError",
    "SanitizeReport",
    "clean_style",
    "clean_tree",
    "is_safe_reference",
    "parse_markup",
    "sanitize_svg",
    "sanitize_svg_with_report",
]
