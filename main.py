#!/usr/bin/env python3
"""
main.py: quick-start entry point.

    python main.py solve my_photo.jpg --target target.png
    python main.py animate <preset-id> -o morph.gif

Or use the installed script:

    pixel-morph solve --help
"""

from pixel_morph.cli import app

if __name__ == "__main__":
    app()
