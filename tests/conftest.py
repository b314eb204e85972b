"""Shared test fixtures for invoicer tests."""

from datetime import datetime

import pytest

from invoicer.config import Config, Contact, Directories, Payment
from invoicer.logging_setup import reset_logging
from invoicer.recipient import Recipient, parse_tag_value
from invoicer.worklog import START_FORMAT, WorklogRecord


INVOICE_TEMPLATE = """\
\\documentclass{article}
%$LANGUAGE
%$RECIPIENT_ADDRESS
%$BILLER_ADDRESS
%$PAYMENT_DETAILS
%$INVOICE_DETAILS
\\begin{document}
%$INVOICE_POSITIONS
%$INVOICE_SUM
%$INVOICE_VALUE_TAX_NOTE
%$TIMESHEET
\\end{document}
"""

TIMESHEET_TEMPLATE = """\
\\begin{tabular}{llrl}
%$WORKLOG
%$TIMESHEET_SUM
\\end{tabular}
"""


@pytest.fixture(autouse=True)
def _reset_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def config_dir(tmp_path):
    """Config directory with templates, locales and tags subdirectories."""
    root = tmp_path / "config"
    (root / "templates").mkdir(parents=True)
    (root / "locales").mkdir()
    (root / "tags").mkdir()
    (root / "templates" / "invoice.tex").write_text(INVOICE_TEMPLATE)
    (root / "templates" / "timesheet.tex").write_text(TIMESHEET_TEMPLATE)
    return root


@pytest.fixture
def make_config(tmp_path, config_dir):
    """Factory fixture for a Config pointing at the temporary directories."""
    def _make_config(**overrides):
        config = Config(
            overwrite="Force",
            directories=Directories(
                config=str(config_dir),
                invoices=str(tmp_path / "out"),
                working_dir=tmp_path,
            ),
            contact=Contact(
                fullname="John Doe",
                street="123 Fake St.",
                zipcode="10115",
                city="Berlin",
                email="john@doe.com",
            ),
            payment=Payment(
                iban="DE123456789012345678",
                bic="MYBANKID",
                taxid="12345678",
                tax_rate=19.0,
            ),
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config
    return _make_config


@pytest.fixture
def make_record():
    """Factory fixture for WorklogRecord instances."""
    def _make_record(start="03/01/2024 09:00", hours=1.0, message="Work", rate=None, tags=("acme",)):
        return WorklogRecord(
            start=datetime.strptime(start, START_FORMAT),
            hours=hours,
            message=message,
            rate=rate,
            tags=frozenset(tags),
        )
    return _make_record


@pytest.fixture
def make_recipient():
    """Factory fixture for Recipient instances; tags given as name -> value string."""
    def _make_recipient(name="acme", tags=None, **overrides):
        parsed = {tag: parse_tag_value(value) for tag, value in (tags or {}).items()}
        return Recipient(name=name, tags=parsed, **overrides)
    return _make_recipient
