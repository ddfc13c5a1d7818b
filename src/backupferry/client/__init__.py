"""Client module - Archive client, transfer catalog, staging and engine."""
