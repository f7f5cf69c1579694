"""Main entry point for running the FastAPI application with auto-reload."""
import uvicorn

from leadmatch.config import load_settings

if __name__ == "__main__":
    settings = load_settings()
    print(f"Starting {settings.app_name} v{settings.version}")
    print(f"Debug mode: {settings.debug}")
    print(f"Database: {settings.db.safe_url()}")
    print(f"Auto-reload: {'Enabled' if settings.debug else 'Disabled'}")
    print("-" * 50)

    uvicorn.run(
        "leadmatch.api:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        reload_dirs=["leadmatch", "ai", "config"] if settings.debug else None,
        reload_includes=["*.py"] if settings.debug else None,
        log_level=settings.logging.level.lower(),
    )
