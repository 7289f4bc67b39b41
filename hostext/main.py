from __future__ import annotations

import sys
import traceback
from typing import List, Optional, Tuple

from hostext.core.config_manager import ConfigManager
from hostext.core.logging_manager import LoggingManager
from hostext.plugin_system.cli import RC_INIT, parse_arguments, run_command
from hostext.utils.exceptions import ManagerInitializationError


def setup_managers(config_path: Optional[str] = None) -> Tuple[ConfigManager, LoggingManager]:
    """Initialize configuration and logging for a command run."""
    config_manager = ConfigManager(config_path=config_path)
    config_manager.initialize()

    logging_manager = LoggingManager(config_manager)
    logging_manager.initialize()
    return config_manager, logging_manager


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)

    try:
        config_manager, logging_manager = setup_managers(args.config)
    except ManagerInitializationError as e:
        print(f'Error starting hostext: {e}', file=sys.stderr)
        return RC_INIT

    try:
        return run_command(args, config_manager)
    except KeyboardInterrupt:
        print('\nStopped by user.')
        return RC_INIT
    except Exception as e:
        print(f'Unhandled exception: {e}', file=sys.stderr)
        traceback.print_exc()
        return RC_INIT
    finally:
        logging_manager.shutdown()
        config_manager.shutdown()


if __name__ == '__main__':
    sys.exit(main())
