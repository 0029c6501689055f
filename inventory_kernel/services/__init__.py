"""Imperative shell: services that read and write through a caller-owned session."""
