"""Configuration loading for invoicer."""

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path

import tomli

logger = logging.getLogger("invoicer.config")

OVERWRITE_POLICIES = ("Force", "RenameOld", "RenameNew", "Skip")

INVOICE_DEFAULTS = {
    "locale": "en",
    "template": "invoice.tex",
    "number_format": "%Y%m${COUNTER}",
    "date_format": "%Y/%m/%d",
    "filename_format": "${INVOICENUMBER}_${INVOICE}_${RECIPIENT}.tex",
    "days_for_payment": 14,
    "calculate_value_added_tax": True,
    "timesheet_template": "",
}

DEFAULT_RATE = 100.0

_VARIABLE_RE = re.compile(r"\$\{([A-Z_]+)\}")


def expand_variables(value: str, variables: dict[str, str]) -> str:
    """Replace ``${NAME}`` placeholders; unknown names are left untouched."""
    return _VARIABLE_RE.sub(lambda m: variables.get(m.group(1), m.group(0)), value)


def _optional_str(value) -> str | None:
    if value is None:
        return None
    return str(value)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"           # INFO or DEBUG
    output: str = "console"       # console, file, or both
    file: str = ""                # log file path
    rotate: bool = True           # enable rotation
    max_size_mb: int = 10         # max file size before rotation
    backup_count: int = 5         # rotated files to keep


@dataclass
class Directories:
    config: str = "${WORKING_DIR}"
    tags: str = "${CONFIG_DIR}/tags"
    templates: str = "${CONFIG_DIR}/templates"
    locales: str = "${CONFIG_DIR}/locales"
    invoices: str = "."
    working_dir: Path = field(default_factory=Path.cwd)

    def _variables(self, year: int | None = None) -> dict[str, str]:
        variables = {
            "WORKING_DIR": str(self.working_dir),
            "HOME": str(Path.home()),
        }
        if year is not None:
            variables["YEAR"] = f"{year:04d}"
        return variables

    def _expand(self, value: str, year: int | None = None) -> Path:
        variables = self._variables(year)
        variables["CONFIG_DIR"] = str(self.config_dir())
        path = Path(expand_variables(value, variables))
        if not path.is_absolute():
            path = self.working_dir / path
        return path

    def resolve(self, value: str) -> Path:
        """Expand variables in a configured path; relative paths are taken from the working dir."""
        return self._expand(value)

    def config_dir(self) -> Path:
        path = Path(expand_variables(self.config, self._variables()))
        if not path.is_absolute():
            path = self.working_dir / path
        return path

    def tags_dir(self) -> Path:
        return self._expand(self.tags)

    def templates_dir(self) -> Path:
        return self._expand(self.templates)

    def locales_dir(self) -> Path:
        return self._expand(self.locales)

    def invoices_dir(self, year: int) -> Path:
        return self._expand(self.invoices, year)


@dataclass
class Contact:
    fullname: str = ""
    street: str = ""
    zipcode: str = ""
    city: str = ""
    email: str = ""
    companyname: str | None = None
    country: str | None = None
    phone: str | None = None
    fax: str | None = None
    website: str | None = None

    def tex_fields(self) -> list[tuple[str, str | None]]:
        return [
            ("companyname", self.companyname),
            ("fullname", self.fullname),
            ("street", self.street),
            ("zipcode", self.zipcode),
            ("city", self.city),
            ("country", self.country),
            ("phone", self.phone),
            ("fax", self.fax),
            ("email", self.email),
            ("website", self.website),
        ]


@dataclass
class Payment:
    iban: str = ""
    bic: str = ""
    taxid: str = ""
    tax_rate: float = 0.0
    accountholder: str | None = None
    currency: str | None = None
    default_rate: float | None = None

    def tex_fields(self) -> list[tuple[str, str | None]]:
        return [
            ("accountholder", self.accountholder),
            ("iban", self.iban),
            ("bic", self.bic),
            ("taxid", self.taxid),
            ("currency", self.currency),
        ]


@dataclass
class InvoiceConfig:
    """Invoice settings; ``None`` means "not set at this level"."""
    locale: str | None = None
    template: str | None = None
    number_format: str | None = None
    date_format: str | None = None
    filename_format: str | None = None
    days_for_payment: int | None = None
    calculate_value_added_tax: bool | None = None
    timesheet_template: str | None = None

    def get(self, name: str, fallback: "InvoiceConfig | None" = None):
        """Resolve a setting: this level > fallback level > hardcoded default."""
        value = getattr(self, name)
        if value is None and fallback is not None:
            value = getattr(fallback, name)
        if value is None:
            value = INVOICE_DEFAULTS[name]
        return value

    def resolved(self, fallback: "InvoiceConfig | None" = None) -> "InvoiceConfig":
        return InvoiceConfig(**{f.name: self.get(f.name, fallback) for f in fields(self)})


@dataclass
class Config:
    overwrite: str = "RenameOld"
    pdf_generator: str = ""
    directories: Directories = field(default_factory=Directories)
    contact: Contact = field(default_factory=Contact)
    payment: Payment = field(default_factory=Payment)
    invoice: InvoiceConfig = field(default_factory=InvoiceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    path: Path | None = None


def parse_contact(data: dict) -> Contact:
    return Contact(
        fullname=data.get("fullname", ""),
        street=data.get("street", ""),
        zipcode=str(data.get("zipcode", "")),
        city=data.get("city", ""),
        email=data.get("email", ""),
        companyname=_optional_str(data.get("companyname")),
        country=_optional_str(data.get("country")),
        phone=_optional_str(data.get("phone")),
        fax=_optional_str(data.get("fax")),
        website=_optional_str(data.get("website")),
    )


def parse_payment(data: dict) -> Payment:
    default_rate = data.get("default_rate")
    return Payment(
        iban=data.get("iban", ""),
        bic=data.get("bic", ""),
        taxid=str(data.get("taxid", "")),
        tax_rate=float(data.get("tax_rate", 0.0)),
        accountholder=_optional_str(data.get("accountholder")),
        currency=_optional_str(data.get("currency")),
        default_rate=float(default_rate) if default_rate is not None else None,
    )


def parse_invoice_config(data: dict) -> InvoiceConfig:
    days = data.get("days_for_payment")
    return InvoiceConfig(
        locale=data.get("locale"),
        template=data.get("template"),
        number_format=data.get("number_format"),
        date_format=data.get("date_format"),
        filename_format=data.get("filename_format"),
        days_for_payment=int(days) if days is not None else None,
        calculate_value_added_tax=data.get("calculate_value_added_tax"),
        timesheet_template=data.get("timesheet_template"),
    )


def load_config(config_path: Path | None = None, working_dir: Path | None = None) -> Config:
    """Load the biller configuration from TOML file."""
    if config_path is None:
        # Look for config in standard locations
        candidates = [
            Path("invoicer.toml"),
            Path.home() / ".config/invoicer/invoicer.toml",
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    config = Config()
    if working_dir is not None:
        config.directories.working_dir = working_dir

    if config_path is None:
        logger.debug("No config file found, using defaults")
        return config

    with open(config_path, "rb") as f:
        data = tomli.load(f)

    config.path = config_path

    if "overwrite" in data:
        overwrite = data["overwrite"]
        if overwrite not in OVERWRITE_POLICIES:
            raise ValueError(
                f"{config_path}: invalid overwrite policy {overwrite!r}, "
                f"expected one of {', '.join(OVERWRITE_POLICIES)}"
            )
        config.overwrite = overwrite

    if "pdf_generator" in data:
        config.pdf_generator = data["pdf_generator"]

    if "directories" in data:
        d = data["directories"]
        defaults = Directories()
        config.directories = Directories(
            config=d.get("config", defaults.config),
            tags=d.get("tags", defaults.tags),
            templates=d.get("templates", defaults.templates),
            locales=d.get("locales", defaults.locales),
            invoices=d.get("invoices", defaults.invoices),
            working_dir=config.directories.working_dir,
        )

    if "contact" in data:
        config.contact = parse_contact(data["contact"])

    if "payment" in data:
        config.payment = parse_payment(data["payment"])

    if "invoice" in data:
        config.invoice = parse_invoice_config(data["invoice"])

    if "logging" in data:
        log = data["logging"]
        config.logging = LoggingConfig(
            level=log.get("level", "INFO"),
            output=log.get("output", "console"),
            file=log.get("file", ""),
            rotate=log.get("rotate", True),
            max_size_mb=log.get("max_size_mb", 10),
            backup_count=log.get("backup_count", 5),
        )

    # Environment variable override for log level
    env_level = os.environ.get("INVOICER_LOG_LEVEL")
    if env_level:
        config.logging.level = env_level

    return config
