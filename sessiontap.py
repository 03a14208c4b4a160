#!/usr/bin/env python3
"""
SessionTap - capture proxy for analytics ingestion traffic

This is a convenience wrapper that calls the modular implementation.
The actual implementation is in src/sessiontap/capture/capture_main.py

Usage:
    python sessiontap.py --listen 3001 --reverse https://us.i.posthog.com
"""

import sys
from pathlib import Path

# Add src to the path
sys.path.insert(0, str(Path(__file__).parent / "src"))

# Import and run the modular main function
from sessiontap.capture.capture_main import main

if __name__ == '__main__':
    main()
