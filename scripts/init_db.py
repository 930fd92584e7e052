"""Create the event metrics tables in the configured application database."""

from eventmetrics.config import load_config


def main() -> None:
    runtime = load_config()
    print(f"Tables ready in {runtime.settings.database_url}")


if __name__ == "__main__":
    main()
