"""Tapedeck daemon entry point: ``python -m tapedeck`` or ``tapedeck``."""

import asyncio
import logging

from tapedeck.app import Tapedeck
from tapedeck.lib.config import cfg


def main():
    level = str(cfg("logging", "level", default="INFO")).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format='[%(levelname)s] %(message)s')
    asyncio.run(Tapedeck().run())


if __name__ == '__main__':
    main()
