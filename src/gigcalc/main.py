"""Application entry point for GigCalc backend server."""

from gigcalc.app import App
from gigcalc.config import Config
from gigcalc.logging import setup_logging
from gigcalc.web.runner import run_server


def main() -> None:
    config = Config()
    setup_logging(config.debug)
    app = App(config)
    run_server(app, config)


if __name__ == "__main__":
    main()
