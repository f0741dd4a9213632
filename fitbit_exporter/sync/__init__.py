"""Heart-rate sync engine.

Modules:
    config_loader — YAML config loader for sync_config.yaml
    fetcher       — rate-limited fetch of one date from the Fitbit API
    writer        — idempotent persistence of a fetched day
    store         — storage interface and its asyncpg implementation
    backfill      — forward/backward date walker with observable status
    scheduler     — periodic runner for one account's driver
    service       — one scheduler per authenticated account
"""
