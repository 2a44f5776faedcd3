"""Main entry point for reviewsync."""

from reviewsync.cli import app


def main() -> None:
    """Run the reviewsync command line."""
    app()


if __name__ == "__main__":
    main()
