#!/usr/bin/env python3
"""
Script entry point for ABM Email Local.

Delegates to ``abm_email_local.cli.main`` so both the installed console script
and direct script execution share the same implementation.
"""

from abm_email_local import __author__ as _AUTHOR, __description__ as _DESCRIPTION, __version__ as _VERSION
from abm_email_local.cli import ABMEmailCLI, main

__all__ = ["ABMEmailCLI", "main", "__version__", "__author__", "__description__"]

__author__ = _AUTHOR
__description__ = _DESCRIPTION
__version__ = _VERSION


if __name__ == "__main__":
    main()
