"""Multi-recipient invoice generation.

Loads worklogs and recipients, then builds, numbers and writes one invoice
per recipient. Problems with a single worklog file or recipient are logged
and skipped so the remaining invoices are still generated.
"""

import json
import logging
import shlex
import subprocess
from datetime import datetime
from pathlib import Path
from typing import TextIO

import tomli

from .config import Config
from .invoice import Invoice
from .locale import Locale, resolve_locale
from .recipient import Recipient, load_recipient, recipients_from_tags
from .worklog import Worklog

logger = logging.getLogger("invoicer.invoicer")

FINGERPRINTS_FILE = ".fingerprints.json"
PDF_TIMEOUT = 300


def resolve_output_path(path: Path, policy: str, now: datetime) -> Path | None:
    """Apply the overwrite policy to an output path.

    Returns the path to write to, or None when the file must be left alone.
    """
    if not path.exists() or policy == "Force":
        return path
    if policy == "Skip":
        return None
    if policy == "RenameNew":
        return path.with_name(f"{path.stem}_rev{now.strftime('%Y%m%d%H%M%S')}{path.suffix}")

    # RenameOld: move the existing file to the first free _rev<N> name
    n = 1
    while True:
        target = path.with_name(f"{path.stem}_rev{n}{path.suffix}")
        if not target.exists():
            break
        n += 1
    path.rename(target)
    logger.info("Renamed existing %s to %s", path.name, target.name)
    return path


def run_pdf_generator(command: str, tex_path: Path) -> Path | None:
    """Run the configured LaTeX command on ``tex_path`` in its directory."""
    args = shlex.split(command) + [tex_path.name]
    try:
        result = subprocess.run(
            args,
            cwd=tex_path.parent,
            capture_output=True,
            text=True,
            timeout=PDF_TIMEOUT,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.error("PDF generation for %s failed: %s", tex_path, e)
        return None
    if result.returncode != 0:
        logger.error(
            "PDF generation for %s exited with %d: %s",
            tex_path, result.returncode, (result.stdout or result.stderr)[-500:],
        )
        return None
    return tex_path.with_suffix(".pdf")


class FingerprintRegistry:
    """JSON file mapping invoice fingerprints to the numbers they were issued with."""

    def __init__(self, path: Path):
        self.path = path
        self._entries: dict[str, dict] = {}
        if path.exists():
            try:
                self._entries = json.loads(path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Ignoring unreadable fingerprint file %s: %s", path, e)

    def get(self, fingerprint: str) -> dict | None:
        return self._entries.get(fingerprint)

    def numbers(self) -> set[str]:
        return {entry["number"] for entry in self._entries.values()}

    def record(self, fingerprint: str, counter: int, number: str, file: str) -> None:
        self._entries[fingerprint] = {"counter": counter, "number": number, "file": file}

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._entries, indent=2, sort_keys=True) + "\n")


class Invoicer:
    def __init__(
        self,
        config: Config,
        date: datetime | None = None,
        counter: int | None = None,
    ):
        self.config = config
        self.date = date or datetime.now()
        self.counter = counter if counter is not None else 1
        self.worklog = Worklog()
        self.recipients: list[Recipient] = []
        self._locales: dict[str, Locale] = {}

    # -- inputs -----------------------------------------------------------

    def append_worklog(self, worklog: Worklog) -> None:
        self.worklog.append(worklog)

    def load_worklog(self, path: Path) -> bool:
        try:
            worklog = Worklog.from_csv_file(path)
        except (OSError, ValueError) as e:
            logger.error("Error loading worklog %s: %s", path, e)
            return False
        self.append_worklog(worklog)
        logger.info("Loaded %d worklog records from %s", len(worklog), path)
        return True

    def load_worklog_stream(self, stream: TextIO, source: str = "<stdin>") -> bool:
        try:
            worklog = Worklog.from_csv(stream, source=source)
        except ValueError as e:
            logger.error("Error loading worklog %s: %s", source, e)
            return False
        self.append_worklog(worklog)
        return True

    def add_recipient(self, recipient: Recipient) -> None:
        self.recipients.append(recipient)

    def load_recipient(self, path: Path) -> bool:
        try:
            recipient = load_recipient(path)
        except (OSError, tomli.TOMLDecodeError, ValueError) as e:
            logger.error("Could not load recipient %s: %s", path, e)
            return False
        self.add_recipient(recipient)
        return True

    def add_recipients_from_worklog(self) -> None:
        tags_dir = self.config.directories.tags_dir()
        self.recipients.extend(recipients_from_tags(self.worklog.tags, tags_dir))

    def has_recipients(self) -> bool:
        return bool(self.recipients)

    def locale(self, name: str) -> Locale:
        if name not in self._locales:
            self._locales[name] = resolve_locale(self.config.directories.locales_dir(), name)
        return self._locales[name]

    # -- generation -------------------------------------------------------

    def build_invoice(self, recipient: Recipient, counter: int) -> Invoice:
        settings = recipient.invoice.resolved(self.config.invoice)
        invoice = Invoice(
            self.config, recipient, self.date, counter, locale=self.locale(settings.locale),
        )
        worklog = self.worklog.from_records_with_tag(recipient.name)
        worklog.set_rate(invoice.default_rate())
        invoice.add_worklog(worklog)
        return invoice

    def _output_path(self, invoice: Invoice, output: Path | None) -> Path:
        if output is None:
            return self.config.directories.invoices_dir(self.date.year) / invoice.filename()
        suffix = output.suffix or ".tex"
        if len(self.recipients) > 1:
            return output.with_name(f"{output.stem}{invoice.counter}{suffix}")
        return output.with_suffix(suffix)

    def generate(self, output: Path | None = None) -> list[dict]:
        """Write one invoice per recipient, returning a summary per written file.

        An invoice whose fingerprint is already registered keeps its recorded
        number and is not written again while its recorded file exists. New
        invoices take the next counter whose number is not registered yet.

        Raises ValueError when there is no recipient to bill.
        """
        logger.info("Worklog tags: %s", ", ".join(sorted(self.worklog.tags)))
        logger.info("Recipients: %s", ", ".join(r.name for r in self.recipients))

        if not self.recipients:
            raise ValueError("No recipient given!")

        registry = FingerprintRegistry(
            self.config.directories.invoices_dir(self.date.year) / FINGERPRINTS_FILE
        )
        taken = registry.numbers()
        counter = self.counter
        results = []

        for recipient in self.recipients:
            invoice = self.build_invoice(recipient, counter)

            if not invoice.positions:
                logger.warning(
                    "%s: The generated invoice contains no positions, no invoice will be generated!",
                    invoice.filename(),
                )
                continue

            fingerprint = invoice.fingerprint()
            issued = registry.get(fingerprint)
            if issued is not None:
                if Path(issued["file"]).exists():
                    logger.info(
                        "%s: unchanged since %s was issued as %s, skipped",
                        recipient.name, issued["file"], issued["number"],
                    )
                    continue
                invoice.set_counter(issued["counter"])
                invoice.set_number(issued["number"])
                logger.info(
                    "%s: already issued as %s, regenerating with its number",
                    recipient.name, issued["number"],
                )
            elif "${COUNTER}" in invoice.settings.number_format:
                while invoice.number() in taken:
                    counter += 1
                    invoice.set_counter(counter)

            target = self._output_path(invoice, output)
            path = resolve_output_path(target, self.config.overwrite, datetime.now())
            if path is None:
                logger.warning("%s exists, skipped", target)
                continue

            invoice.write_tex_file(path)
            summary = {
                "file": str(path),
                "recipient": recipient.name,
                "number": invoice.number(),
                "positions": len(invoice.positions),
                "total": round(invoice.total(), 2),
                "total_text": invoice.format_amount(invoice.total()),
                "with_tax": invoice.calculate_value_added_tax,
                "fingerprint": fingerprint,
            }
            if self.config.pdf_generator:
                pdf = run_pdf_generator(self.config.pdf_generator, path)
                if pdf is not None:
                    summary["pdf"] = str(pdf)
            registry.record(fingerprint, invoice.counter, invoice.number(), str(path))
            taken.add(invoice.number())
            results.append(summary)
            if issued is None:
                counter += 1

        if results:
            registry.save()
        return results
