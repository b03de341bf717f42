"""Allow ``python -m tmod_updater``."""

from tmod_updater.cli import run

if __name__ == "__main__":
    run()
