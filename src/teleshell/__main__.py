"""teleshell CLI entry point."""

from teleshell.cli import app

if __name__ == "__main__":
    app()
