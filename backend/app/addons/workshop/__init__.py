from .router import router, get_workshop_cache


def startup_workshop() -> None:
    # Drop stale records once per start (non-fatal on error)
    get_workshop_cache().cleanup_expired()
