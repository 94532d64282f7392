"""Run the webhook server: python -m deployhook"""

import uvicorn

from deployhook.core.config import settings


def main() -> None:
    uvicorn.run(
        "deployhook.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        # request lines come from the app middleware
        access_log=False,
    )


if __name__ == "__main__":
    main()
