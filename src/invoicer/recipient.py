"""Recipient definitions loaded from per-recipient TOML files.

The recipient name is the file stem, so ``tags/acme.toml`` bills worklog
records tagged ``acme``. A ``[tags]`` table maps worklog tags to the
position text shown on the invoice; a value prefixed with ``[default]``
marks the tag used for records matching no other configured tag.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import tomli

from .config import Contact, InvoiceConfig, parse_contact, parse_invoice_config

logger = logging.getLogger("invoicer.recipient")

DEFAULT_MARKER = "[default]"


@dataclass(frozen=True)
class TagInfo:
    position_text: str
    is_default: bool = False


def parse_tag_value(value: str) -> TagInfo:
    """Parse ``"[default] Consulting"`` style tag values."""
    text = value.strip()
    if text.startswith(DEFAULT_MARKER):
        return TagInfo(position_text=text[len(DEFAULT_MARKER):].strip(), is_default=True)
    return TagInfo(position_text=text, is_default=False)


@dataclass
class Recipient:
    name: str
    contact: Contact = field(default_factory=Contact)
    invoice: InvoiceConfig = field(default_factory=InvoiceConfig)
    default_rate: float | None = None
    tags: dict[str, TagInfo] = field(default_factory=dict)  # declaration order

    def default_tag_name(self) -> str | None:
        for name, info in self.tags.items():
            if info.is_default:
                return name
        return None

    def matching_tag(self, record_tags: Iterable[str]) -> str | None:
        """First configured tag (in declaration order) carried by a record."""
        record_tags = set(record_tags)
        for name in self.tags:
            if name in record_tags:
                return name
        return None

    def tex_fields(self) -> list[tuple[str, str | None]]:
        return [("name", self.name)] + self.contact.tex_fields()


def parse_recipient_data(name: str, data: dict) -> Recipient:
    tags: dict[str, TagInfo] = {}
    for tag_name, value in data.get("tags", {}).items():
        if not isinstance(value, str):
            raise ValueError(f"recipient {name}: tag {tag_name!r} must be a string")
        tags[tag_name] = parse_tag_value(value)

    defaults = [n for n, info in tags.items() if info.is_default]
    if len(defaults) > 1:
        raise ValueError(
            f"recipient {name}: more than one default tag ({', '.join(defaults)})"
        )

    default_rate = data.get("default_rate")
    return Recipient(
        name=name,
        contact=parse_contact(data.get("contact", {})),
        invoice=parse_invoice_config(data.get("invoice", {})),
        default_rate=float(default_rate) if default_rate is not None else None,
        tags=tags,
    )


def load_recipient(path: Path) -> Recipient:
    """Load a recipient TOML file; the recipient name is the file stem."""
    with open(path, "rb") as f:
        data = tomli.load(f)
    return parse_recipient_data(path.stem, data)


def recipients_from_tags(tags: Iterable[str], tags_dir: Path) -> list[Recipient]:
    """Load a recipient for every tag with a ``<tags_dir>/<tag>.toml`` file."""
    recipients = []
    for tag in sorted(tags):
        path = tags_dir / f"{tag}.toml"
        if not path.is_file():
            logger.debug("No recipient file for tag %s", tag)
            continue
        try:
            recipients.append(load_recipient(path))
        except (OSError, tomli.TOMLDecodeError, ValueError) as e:
            logger.error("Could not load recipient %s: %s", path, e)
    return recipients
