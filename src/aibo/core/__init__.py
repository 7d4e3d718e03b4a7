"""Cross-cutting helpers: logging and tabular output."""
