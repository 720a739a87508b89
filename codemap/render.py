from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass

import jinja2

from .errors import TemplateError

_ENV = jinja2.Environment(
    autoescape=False,
    keep_trailing_newline=True,
    undefined=jinja2.StrictUndefined,
)


@dataclass(frozen=True)
class GroupRecord:
    """Template view of one group location.

    ``file``/``file_line`` are repository-relative; ``range_href`` is relative
    to the documentation file being rendered.
    """

    file: str
    line: int
    file_line: str
    range_href: str
    markdown_range_link: str


def render(template: str, records: Sequence[GroupRecord]) -> bytes:
    """Render ``template`` once with every record exposed as ``groups``."""
    try:
        tpl = _ENV.from_string(template)
        text = tpl.render(groups=[asdict(r) for r in records])
    except jinja2.TemplateError as e:
        raise TemplateError(str(e)) from e
    return text.encode("utf-8")
