"""Entry point for CDN Attach Bot."""

import logging
import sys

from .bot import CdnAttachBot
from .config import Config


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    try:
        config = Config.from_env()
    except ValueError as e:
        logging.error("Configuration error: %s", e)
        sys.exit(1)

    logging.getLogger().setLevel(config.log_level)

    bot = CdnAttachBot(config)
    bot.run(config.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
