#!/usr/bin/env python3
"""
Development server for CertAnchor Backend.
Host, port, reload and log level come from the same settings as the app.
"""

import uvicorn

from certanchor.core.config import get_settings


def main() -> None:
    settings = get_settings()
    print(f"CertAnchor Backend on http://{settings.host}:{settings.port} (docs at /docs)")
    uvicorn.run(
        "certanchor.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
