from django.conf import settings

DEFAULTS = {
    "RESERVATION_TTL_HOURS": 24,
    "BATCH_CHUNK_SIZE": 50,
    "EXPIRY_SWEEP_INTERVAL_MINUTES": 15,
    "EXPIRY_SWEEP_BATCH_SIZE": 50,
    "HISTORY_PAGE_SIZE": 50,
    "AUDIT_ENABLED": True,
}


def engine_setting(name: str):
    if name not in DEFAULTS:
        raise KeyError(f"Unknown inventory engine setting: {name}")
    return getattr(settings, "INVENTORY_ENGINE", {}).get(name, DEFAULTS[name])
