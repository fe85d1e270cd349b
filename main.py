#!/usr/bin/env python3
"""
SubStitch Entry Point Script

This script initializes the CLI handler and runs one transcription session.
"""

from substitch.cli import CLIHandler

if __name__ == "__main__":
    cli = CLIHandler()
    cli.run()
