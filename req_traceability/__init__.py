"""Requirements traceability core: import, identifiers, history, matrix."""
