from .routes import storage_bp  # noqa: F401
