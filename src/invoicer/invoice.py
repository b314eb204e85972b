"""Invoice building: worklog aggregation into positions and TeX rendering."""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import TextIO

from .config import DEFAULT_RATE, Config, InvoiceConfig
from .locale import Locale, currency_symbol
from .recipient import Recipient
from .tex import TexTemplate, tex_command, tex_commands
from .worklog import Worklog, WorklogRecord

logger = logging.getLogger("invoicer.invoice")

TAG_KEY = "tag"
MESSAGE_KEY = "message"

PositionKey = tuple[str, str]


@dataclass
class InvoicePosition:
    text: str
    amount: float
    price: float
    unit: str = "h"

    @property
    def net(self) -> float:
        return self.amount * self.price

    @classmethod
    def from_worklog_record(
        cls, record: WorklogRecord, default_rate: float, text: str | None = None,
    ) -> "InvoicePosition":
        return cls(
            text=record.message if text is None else text,
            amount=record.hours,
            price=record.effective_rate(default_rate),
        )


def merge_positions(a: InvoicePosition, b: InvoicePosition) -> InvoicePosition:
    """Combine two positions into one with a quantity-weighted average price.

    Raises ValueError when text or unit differ.
    """
    if a.unit != b.unit or a.text != b.text:
        raise ValueError(
            f"cannot merge positions {a.text!r} ({a.unit}) and {b.text!r} ({b.unit})"
        )
    amount = a.amount + b.amount
    if amount == 0:
        price = a.price
    else:
        price = (a.amount * a.price + b.amount * b.price) / amount
    return InvoicePosition(text=a.text, amount=amount, price=price, unit=a.unit)


def position_key(record: WorklogRecord, recipient: Recipient) -> tuple[PositionKey, str]:
    """Grouping key and display text for a record.

    A configured tag on the record wins, then the recipient's default tag,
    then the record message itself. Tag and message keys never collide, so a
    message that happens to equal a tag name gets its own position.
    """
    tag = recipient.matching_tag(record.tags)
    if tag is None:
        tag = recipient.default_tag_name()
    if tag is not None:
        return (TAG_KEY, tag), recipient.tags[tag].position_text
    return (MESSAGE_KEY, record.message), record.message


def _position_order(key: PositionKey) -> tuple[bool, str]:
    # tag positions first, then free-text positions
    kind, name = key
    return kind != TAG_KEY, name


class Timesheet:
    """Per-entry listing of the worklog records billed on an invoice."""

    def __init__(self, template: Path, locale: Locale, date_format: str = "%Y/%m/%d"):
        self.template = template
        self.locale = locale
        self.date_format = date_format
        self.worklog = Worklog()

    def add_record(self, record: WorklogRecord) -> None:
        self.worklog.add_record(record)

    def sort(self) -> None:
        self.worklog.sort()

    def write_rows(self, w: TextIO) -> None:
        for record in self.worklog:
            w.write(
                "{date} & {begin}--{end} & {hours} & {message}\\\\\n".format(
                    date=record.start.strftime(self.date_format),
                    begin=record.begin_date.strftime("%H:%M"),
                    end=record.end_date.strftime("%H:%M"),
                    hours=self.locale.format_number(record.hours, 2),
                    message=record.message,
                )
            )

    def write_sum(self, w: TextIO) -> None:
        w.write(f"\\timesheetsum{{{self.locale.format_number(self.worklog.hours(), 2)}}}\n")

    def generate_tex(self, w: TextIO) -> None:
        template = TexTemplate(self.template)
        template.register("WORKLOG", self.write_rows)
        template.register("TIMESHEET_SUM", self.write_sum)
        template.render(w)


@dataclass
class InvoiceDetails:
    date: str
    number: str
    periodbegin: str
    periodend: str
    daysforpayment: str
    duedate: str

    @classmethod
    def from_invoice(cls, invoice: "Invoice") -> "InvoiceDetails":
        fmt = invoice.settings.date_format
        days = invoice.settings.days_for_payment
        return cls(
            date=invoice.date.strftime(fmt),
            number=invoice.number(),
            periodbegin=invoice.begin_date.strftime(fmt),
            periodend=invoice.end_date.strftime(fmt),
            daysforpayment=str(days),
            duedate=(invoice.date + timedelta(days=days)).strftime(fmt),
        )

    def tex_fields(self) -> list[tuple[str, str | None]]:
        return [
            ("date", self.date),
            ("number", self.number),
            ("periodbegin", self.periodbegin),
            ("periodend", self.periodend),
            ("daysforpayment", self.daysforpayment),
            ("duedate", self.duedate),
        ]


class Invoice:
    """One invoice for one recipient.

    Filled by one or more ``add_worklog`` calls, then rendered once with
    ``generate_tex``/``write_tex_file``.
    """

    def __init__(
        self,
        config: Config,
        recipient: Recipient,
        date: datetime,
        counter: int = 1,
        locale: Locale | None = None,
    ):
        self.config = config
        self.recipient = recipient
        self.date = date
        self.counter = counter
        self.settings: InvoiceConfig = recipient.invoice.resolved(config.invoice)
        self.locale = locale if locale is not None else Locale(name=self.settings.locale)
        self.begin_date = datetime.max
        self.end_date = datetime.min
        self.timesheet: Timesheet | None = None
        self._number: str | None = None
        self._positions: dict[PositionKey, InvoicePosition] = {}

    @property
    def positions(self) -> list[InvoicePosition]:
        return [self._positions[key] for key in sorted(self._positions, key=_position_order)]

    def set_counter(self, counter: int) -> None:
        self.counter = counter

    def set_number(self, number: str) -> None:
        """Pin the invoice number, e.g. to the one an earlier run issued."""
        self._number = number

    def default_rate(self) -> float:
        if self.recipient.default_rate is not None:
            return self.recipient.default_rate
        if self.config.payment.default_rate is not None:
            return self.config.payment.default_rate
        return DEFAULT_RATE

    def generate_timesheet(self) -> bool:
        return bool(self.settings.timesheet_template)

    def add_position(self, key: PositionKey, position: InvoicePosition) -> None:
        existing = self._positions.get(key)
        self._positions[key] = position if existing is None else merge_positions(existing, position)

    def add_worklog(self, worklog: Worklog) -> None:
        default_rate = self.default_rate()

        for record in worklog:
            self.begin_date = min(self.begin_date, record.begin_date)
            self.end_date = max(self.end_date, record.end_date)

            key, text = position_key(record, self.recipient)
            self.add_position(key, InvoicePosition.from_worklog_record(record, default_rate, text))

            if self.generate_timesheet():
                if self.timesheet is None:
                    self.timesheet = Timesheet(
                        self.config.directories.templates_dir() / self.settings.timesheet_template,
                        self.locale,
                        self.settings.date_format,
                    )
                self.timesheet.add_record(record)

        if self.timesheet is not None:
            self.timesheet.sort()

    def number(self) -> str:
        if self._number is not None:
            return self._number
        return (
            self.settings.number_format
            .replace("%Y", f"{self.date.year:04d}")
            .replace("%m", f"{self.date.month:02d}")
            .replace("${COUNTER}", f"{self.counter:02d}")
        )

    def filename(self) -> str:
        return (
            self.settings.filename_format
            .replace("${INVOICENUMBER}", self.number())
            .replace("${INVOICE}", self.locale.tr("invoice"))
            .replace("${RECIPIENT}", self.recipient.name)
        )

    @property
    def calculate_value_added_tax(self) -> bool:
        return bool(self.settings.calculate_value_added_tax)

    def tax_rate(self) -> float:
        return self.config.payment.tax_rate

    def currency(self) -> str:
        return self.config.payment.currency or self.locale.currency

    def currency_symbol(self) -> str:
        return currency_symbol(self.currency())

    def sum(self) -> float:
        return sum(p.net for p in self._positions.values())

    def sum_with_tax(self) -> float:
        return self.sum() * (1.0 + self.tax_rate() / 100.0)

    def tax(self) -> float:
        return self.sum_with_tax() - self.sum()

    def total(self) -> float:
        return self.sum_with_tax() if self.calculate_value_added_tax else self.sum()

    def format_amount(self, value: float) -> str:
        return self.locale.format_amount(value, self.currency())

    def fingerprint(self) -> str:
        """Stable content hash: recipient, billed period and every position."""
        parts = [
            self.recipient.name,
            self.begin_date.isoformat(),
            self.end_date.isoformat(),
        ]
        for p in self.positions:
            parts.append(f"{p.text}|{p.amount:.4f}|{p.price:.4f}|{p.unit}")
        return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()[:16]

    # -- TeX output -------------------------------------------------------

    def _write_language(self, w: TextIO) -> None:
        tex_commands(w, "tr", self.locale.translations.items())

    def _write_recipient_address(self, w: TextIO) -> None:
        tex_commands(w, "recipient", self.recipient.tex_fields())

    def _write_biller_address(self, w: TextIO) -> None:
        tex_commands(w, "my", self.config.contact.tex_fields())

    def _write_payment_details(self, w: TextIO) -> None:
        tex_commands(w, "my", self.config.payment.tex_fields())

    def _write_invoice_details(self, w: TextIO) -> None:
        tex_commands(w, "invoice", InvoiceDetails.from_invoice(self).tex_fields())

    def _write_positions(self, w: TextIO) -> None:
        locale = self.locale
        for p in self.positions:
            w.write(
                "\\position{{{text}}}{{{amount}{unit}}}{{{rate}/{unit}}}{{{net}}}\n".format(
                    text=p.text,
                    amount=locale.format_number(p.amount, 2),
                    unit=p.unit,
                    rate=self.format_amount(p.price),
                    net=self.format_amount(p.net),
                )
            )

    def _write_sum(self, w: TextIO) -> None:
        if self.calculate_value_added_tax:
            w.write(
                "\\invoicesum{{{sum}}}{{{tax_rate:g}}}{{{tax}}}{{{sum_with_tax}}}\n".format(
                    sum=self.format_amount(self.sum()),
                    tax_rate=self.tax_rate(),
                    tax=self.format_amount(self.tax()),
                    sum_with_tax=self.format_amount(self.sum_with_tax()),
                )
            )
        else:
            w.write(f"\\invoicesumnotax{{{self.format_amount(self.sum())}}}\n")

    def _write_value_tax_note(self, w: TextIO) -> None:
        if not self.calculate_value_added_tax:
            w.write("\\trinvoicevaluetaxnote\n")

    def _write_timesheet(self, w: TextIO) -> None:
        if self.timesheet is not None:
            w.write("\\newpage\n")
            self.timesheet.generate_tex(w)

    def template(self) -> TexTemplate:
        templates_dir = self.config.directories.templates_dir()
        template = TexTemplate(templates_dir / self.settings.template, templates_dir)
        template.register("LANGUAGE", self._write_language)
        template.register("RECIPIENT_ADDRESS", self._write_recipient_address)
        template.register("BILLER_ADDRESS", self._write_biller_address)
        template.register("PAYMENT_DETAILS", self._write_payment_details)
        template.register("INVOICE_DETAILS", self._write_invoice_details)
        template.register("INVOICE_POSITIONS", self._write_positions)
        template.register("INVOICE_SUM", self._write_sum)
        template.register("INVOICE_VALUE_TAX_NOTE", self._write_value_tax_note)
        template.register("TIMESHEET", self._write_timesheet)
        return template

    def generate_tex(self, w: TextIO) -> None:
        self.template().render(w)

    def write_tex_file(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            self.generate_tex(f)
