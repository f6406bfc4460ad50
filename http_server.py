#!/usr/bin/env python3
"""
AlbumShelf HTTP Server Runner
"""

import os

from dotenv import load_dotenv

from albumshelf.crosscutting.config import get_settings
from albumshelf.crosscutting.logging import setup_logging
from albumshelf.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    load_dotenv()
    settings = get_settings()
    setup_logging(settings.log_level)

    server = HTTPServer(
        host=os.getenv('ALBUMSHELF_HOST', 'localhost'),
        port=int(os.getenv('ALBUMSHELF_PORT', '3000')),
        debug=os.getenv('ALBUMSHELF_DEBUG', '0') == '1',
        settings=settings,
    )
    server.run()


if __name__ == '__main__':
    main()
