"""Excel, PDF and print-HTML renderers."""
