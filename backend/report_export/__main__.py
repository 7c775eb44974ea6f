"""Serve the export API with uvicorn: ``python -m report_export``."""

import uvicorn

from report_export.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "report_export.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.env == "dev",
    )


if __name__ == "__main__":
    main()
