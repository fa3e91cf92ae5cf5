"""Entry point for running brainbot as a module: python -m brainbot."""

from brainbot.cli.commands import app

if __name__ == "__main__":
    app()
