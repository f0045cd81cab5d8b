import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Ensure the src directory is on sys.path when running as a script
_SRC_DIR = Path(__file__).resolve().parents[1]
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from lifesim.application.services.remote_calls import shutdown_remote_calls
from lifesim.bootstrap import create_app
from lifesim.presentation.console import ConsoleApp


def _configure_logging() -> None:
    level_name = os.getenv("LIFESIM_LOG_LEVEL", "WARNING").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_help_surface() -> None:
    print("\nHelp:")
    print("- Type 'ajuda' at the prompt to list commands, 'sair' to quit.")
    print("- Startup issues: verify LIFESIM_DATABASE_URL / LIFESIM_REMOTE_URL or unset them to use in-memory mode.")


def main() -> None:
    load_dotenv()
    _configure_logging()
    try:
        ConsoleApp(create_app()).run()
    except KeyboardInterrupt:
        print("\nSessão encerrada.")
    except Exception as exc:
        logging.getLogger("lifesim").debug("Fatal error", exc_info=True)
        print("An unexpected error occurred. The game closed safely.")
        print(f"Reason: {exc}")
        _print_help_surface()
    finally:
        shutdown_remote_calls()


if __name__ == "__main__":
    main()
