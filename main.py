#!/usr/bin/env python3
"""
BLE Weatherstation Gateway - Main Entry Point

Usage:
    python main.py --help                 # Show help
    python main.py run                    # Run the gateway
    python main.py sensors                # List registered sensors
    python main.py log AA:BB:CC:DD:EE:FF  # Show a sensor's log
    python main.py label ADDR "Kitchen"   # Label a sensor
    python main.py forget ADDR            # Remove a sensor from the registry

Environment Setup:
    Copy and configure the environment file:
    cp .env.sample .env
"""

import sys

from weatherstation.cli.main import cli


def main():
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
