"""invoicer - LaTeX invoices from CSV worklogs."""

__version__ = "0.1.0"
