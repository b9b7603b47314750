# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""TMAForm command-line tools.

Usage:
    tmaform keys generate       Create an RSA signing keypair
    tmaform keys verify         Check a metadata/signature token pair
    tmaform form link           Build a signed form deep link
    tmaform form decode <url>   Decode and validate a deep link
    tmaform form submit <url>   Fill in a form and POST it
"""

from app import __version__

__all__ = ["__version__"]
