#!/usr/bin/env python
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from src.pkiflow.config import load_config
from src.pkiflow.errors import PkiflowError
from src.pkiflow.identity.prompter import ConsolePrompter
from src.pkiflow.session.services import build_session


def setup_logging() -> None:
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.remove()
    logger.add(sys.stderr, level=log_level)


def main() -> None:
    load_dotenv(Path.cwd() / ".env")
    setup_logging()

    try:
        config = load_config()
        logger.info(f"config: {config.model_dump_json(indent=4)}")
        code = build_session(config, ConsolePrompter()).run()
    except PkiflowError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(e.exit_code)
    except (KeyboardInterrupt, EOFError):
        logger.error("输入中断，退出")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
