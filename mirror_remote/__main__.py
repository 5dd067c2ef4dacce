"""Entry point for `python -m mirror_remote`."""

from mirror_remote.cli.commands import app

if __name__ == "__main__":
    app()
