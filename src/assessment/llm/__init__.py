"""Language-model client."""
