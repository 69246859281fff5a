import uvicorn

from loyalty_accrual.core.settings import settings


def main() -> None:
    uvicorn.run(
        "loyalty_accrual.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
    )


if __name__ == "__main__":
    main()
