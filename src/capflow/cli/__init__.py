# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""CLI module for capflow.

This module provides the command-line interface using Typer.
"""

from capflow.cli.app import app

__all__ = ["app"]
