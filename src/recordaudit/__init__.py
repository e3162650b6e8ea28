"""RecordAudit: research-only audits of PDF court records."""

__version__ = "0.1.0"
