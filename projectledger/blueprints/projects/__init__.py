from .routes import projects_bp  # noqa: F401
