# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""TMAForm signed-envelope protocol: codec, schema, signing, links, payloads."""
