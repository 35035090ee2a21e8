#!/usr/bin/env python3
"""
Juggle Counter - Simple entry point.

Usage:
    python main.py                          # Start the host service on 0.0.0.0:8000
    python main.py --port 9000              # Different port
    python main.py --replay frames.jsonl    # Count juggles in a recorded detection stream
    python main.py --config my_config.json  # Load settings from a file
    python main.py --debug                  # Enable debug logging
"""

import sys


def main():
    print("Juggle Counter")
    print("Press Ctrl+C to stop\n")

    from juggle_counter.main import main as counter_main
    try:
        return counter_main(sys.argv[1:])
    except KeyboardInterrupt:
        print("\nStopped")
        return 0


if __name__ == "__main__":
    sys.exit(main())
