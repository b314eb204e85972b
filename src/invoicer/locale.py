"""Locale settings: number formatting, currency symbols and translations."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import tomli

logger = logging.getLogger("invoicer.locale")

CURRENCY_SYMBOLS = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "CHF": "CHF",
}


def currency_symbol(code: str) -> str:
    """Symbol for an ISO currency code, falling back to the euro sign."""
    return CURRENCY_SYMBOLS.get(code, "€")


@dataclass(frozen=True)
class Locale:
    name: str = "en"
    currency: str = "EUR"
    decimalseparator: str = "."
    thousandseparator: str = ","
    pattern: str = "# !"  # '#' = number, '!' = currency symbol
    translations: dict[str, str] = field(default_factory=lambda: {"invoice": "invoice"})

    def tr(self, name: str) -> str:
        return self.translations.get(name, name)

    def format_number(self, value: float, precision: int = 2) -> str:
        text = f"{value:,.{precision}f}"
        # Swap through a placeholder so "," and "." may trade places
        return (
            text.replace(",", "\0")
            .replace(".", self.decimalseparator)
            .replace("\0", self.thousandseparator)
        )

    def format_amount(self, value: float, currency: str | None = None) -> str:
        symbol = currency_symbol(currency or self.currency)
        return self.pattern.replace("#", self.format_number(value, 2)).replace("!", symbol)


def _parse_locale_data(name: str, data: dict) -> Locale:
    default = Locale()
    translations = data.get("translations", {})
    if not isinstance(translations, dict):
        raise ValueError(f"locale {name}: [translations] must be a table")
    return Locale(
        name=name,
        currency=data.get("currency", default.currency),
        decimalseparator=data.get("decimalseparator", default.decimalseparator),
        thousandseparator=data.get("thousandseparator", default.thousandseparator),
        pattern=data.get("pattern", default.pattern),
        translations={str(k): str(v) for k, v in translations.items()},
    )


def load_locale(path: Path) -> Locale:
    """Load a locale TOML file; the locale name is the file stem."""
    with open(path, "rb") as f:
        data = tomli.load(f)
    return _parse_locale_data(path.stem, data)


def resolve_locale(locales_dir: Path, name: str) -> Locale:
    """Load ``<locales_dir>/<name>.toml`` or fall back to the built-in default."""
    path = locales_dir / f"{name}.toml"
    try:
        return load_locale(path)
    except FileNotFoundError:
        logger.warning("Locale file %s not found, using built-in defaults", path)
    except (OSError, tomli.TOMLDecodeError, ValueError) as e:
        logger.error("Error loading locale %s: %s", path, e)
    return Locale(name=name)
