import os
from typing import Optional

import yaml

from errors import UnknownVariantError
from sms_variants import VariantConfig


DEFAULTS = {
    "id_based": False,
    "matcher_policy": "exact_name_trust",
    "roster_required": True,
    "name_format": "columns",
    "matching": {"match_threshold": 0.7, "suggestion_threshold": 0.6, "suggestion_limit": 5},
    "payables": {
        "donation_keywords": ["donation", "koha", "charitable", "giving", "fundrais", "sponsor", "contribution"],
        "donations_gst_exempt": False,
        "default_ledger_code": "",
        "default_category": "",
    },
    "filters": {
        "staff_keywords": ["staff", "admin", "teacher", "employee"],
        "pre_enrolment_keywords": ["pre-enrol", "preenrol"],
    },
}

VARIANT_DEFAULTS = {
    "kamar": {
        "reader": "kamar",
        "id_based": True,
        "matcher_policy": None,
        "roster_required": False,
        "payables": {"donations_gst_exempt": True},
        "filters": {"excluded_message": "Already uploaded to Kindo"},
    },
    "hero": {
        "reader": "hero",
        "matcher_policy": "room_sensitive",
        "matching": {"suggestion_threshold": 0.8},
        "payables": {"donations_gst_exempt": True},
    },
    "edge": {
        "reader": "edge",
        "matcher_policy": "exact_name_trust",
        "name_format": "last_comma_first",
        "payables": {"default_ledger_code": "~LDC_Default", "default_category": "General"},
    },
}


def default_config_path() -> str:
    return os.getenv(
        "SMS_VARIANTS_CONFIG",
        os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "variants.yml"),
    )


def _merge(base: dict, override: Optional[dict]) -> dict:
    # shallow merge, nested dicts one level deep
    merged = dict(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v
    return merged


def load_variants_file(path: Optional[str] = None) -> dict:
    path = path or default_config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}


def load_variant_settings(name: str, path: Optional[str] = None) -> dict:
    name = (name or "").strip().lower()
    cfg = load_variants_file(path)
    file_variants = cfg.get("variants") or {}
    known = set(VARIANT_DEFAULTS) | set(file_variants)
    if name not in known:
        raise UnknownVariantError(name, list(known))

    # code defaults < file defaults < built-in variant settings < file variant block
    merged = _merge(DEFAULTS, cfg.get("defaults"))
    merged = _merge(merged, VARIANT_DEFAULTS.get(name))
    return _merge(merged, file_variants.get(name))


def load_variant_config(name: str, path: Optional[str] = None) -> VariantConfig:
    name = (name or "").strip().lower()
    return VariantConfig.from_dict(name, load_variant_settings(name, path))
