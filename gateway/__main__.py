#!/usr/bin/env python3
"""
Entry point for the gateway CLI.

Run with: python -m gateway
"""

from .cli import cli

if __name__ == '__main__':
    cli()
