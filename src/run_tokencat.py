"""Frozen-app entry point for Token Cat.

Bundlers run the entry script directly, which breaks relative imports in
__main__.py. This file uses absolute imports to bootstrap the package.
"""

from tokencat.__main__ import main

main()
