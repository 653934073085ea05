"""Location categorization.

Modules:
    base          — LocationFix, Placemark, LocationCategory, distance helper
    config_loader — Load/validate/hot-reload categorizer_config.yaml
    categorizer   — Rule-based place classifier
    geocoder      — Reverse geocoding (Nominatim)
    ingest        — Categorize a raw fix against local history and store it
"""
