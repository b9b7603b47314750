# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""TMAForm: signed Telegram Mini App forms."""

__version__ = "1.0.0"
