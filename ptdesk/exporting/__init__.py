"""Report exports (CSV and XLSX)."""
