"""Client-side helpers for consumers of the access-control API."""
