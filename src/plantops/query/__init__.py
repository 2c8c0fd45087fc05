"""Query path: extraction, structured lookup, hybrid routing."""
