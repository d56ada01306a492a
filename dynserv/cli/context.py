"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

CLI context for Dynserv.

Carries the loaded configuration from the ``dynserv`` group to its commands.
"""

from typing import Optional

import click

from dynserv.config.settings import DynservConfig, get_default_config


class CLIContext:
    """State shared by the dynserv group and its commands."""

    def __init__(self):
        self.config: Optional[DynservConfig] = None
        self.config_path: Optional[str] = None
        self.verbose = False

    def gateway_config(self) -> DynservConfig:
        """Loaded configuration, or defaults when none was loaded."""
        if self.config is None:
            self.config = get_default_config()
        return self.config


pass_context = click.make_pass_decorator(CLIContext, ensure=True)
