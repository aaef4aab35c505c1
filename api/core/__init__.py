"""
Shared, cross-cutting code for the API.

`core/` contains small building blocks that multiple features use
(settings, errors, DB wiring, the range store adapter, the feed client).
Keep feature-specific logic in the corresponding feature package
(e.g. `earthquakes/`).
"""
