import uvicorn

from archreview.config import settings


def main() -> None:
    uvicorn.run("archreview.main:app", host=settings.app_host, port=settings.app_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
