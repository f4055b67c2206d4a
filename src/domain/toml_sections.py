"""Mapping layer between flat TileEngineSettings fields and sectioned TOML format.

TileEngineSettings remains a flat Pydantic model. This module provides two functions:
- flat_to_sectioned(): flat dict → sectioned dict (for TOML save)
- sectioned_to_flat(): sectioned dict → flat dict (for TOML load)
"""

from __future__ import annotations

# {section_name: {flat_field_name: short_name_in_toml}}
SECTION_MAP: dict[str, dict[str, str]] = {
    'source': {
        'tile_url_template': 'url_template',
        'servers': 'servers',
        'cache_dir': 'cache_dir',
        'tile_extension': 'extension',
        'use_http_cache': 'use_http_cache',
    },
    'download': {
        'min_zoom': 'min_zoom',
        'max_zoom': 'max_zoom',
        'max_concurrent': 'concurrency',
        'rate_limit_per_sec': 'rate_limit_per_sec',
    },
    'retry': {
        'retry_max': 'max_attempts',
        'backoff_initial_ms': 'backoff_initial_ms',
        'request_timeout_s': 'timeout_s',
    },
    'viewport': {
        'center_lat': 'center_lat',
        'center_lon': 'center_lon',
        'zoom': 'zoom',
        'tile_size_px': 'tile_size',
        'viewport_tiles_x': 'tiles_x',
        'viewport_tiles_y': 'tiles_y',
        'prefetch_ring': 'prefetch_ring',
        'browse_download': 'browse_download',
    },
}

# Reverse index: flat_field → (section, short_name)
_FLAT_TO_SECTION: dict[str, tuple[str, str]] = {}
for _section, _fields in SECTION_MAP.items():
    for _flat, _short in _fields.items():
        _FLAT_TO_SECTION[_flat] = (_section, _short)

# Reverse index: (section, short_name) → flat_field
_SECTION_TO_FLAT: dict[str, dict[str, str]] = {}
for _section, _fields in SECTION_MAP.items():
    _SECTION_TO_FLAT[_section] = {v: k for k, v in _fields.items()}


def flat_to_sectioned(flat: dict) -> dict:
    """Convert flat settings dict to sectioned dict for TOML output.

    TOML has no null, so ``None`` values are left out and fall back to the
    model defaults on load.
    """
    result: dict = {}
    for key, value in flat.items():
        if value is None:
            continue
        section, short_name = _FLAT_TO_SECTION.get(key, ('common', key))
        result.setdefault(section, {})[short_name] = value
    return result


def sectioned_to_flat(data: dict) -> dict:
    """Convert sectioned TOML dict to flat dict for TileEngineSettings validation."""
    flat: dict = {}
    for key, value in data.items():
        if isinstance(value, dict) and key in _SECTION_TO_FLAT:
            # Known section: expand short names to flat names
            mapping = _SECTION_TO_FLAT[key]
            for short_name, field_value in value.items():
                flat[mapping.get(short_name, short_name)] = field_value
        elif isinstance(value, dict):
            # 'common' and unknown sections pass through as-is
            flat.update(value)
        else:
            # Top-level key (flat TOML)
            flat[key] = value
    return flat
