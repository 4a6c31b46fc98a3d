#!/usr/bin/env python3
"""
cc-caller Server Runner.

Convenience script to run the server from a source checkout.

Usage:
    python run_server.py

Or run as module:
    python -m cc_caller
"""

import sys
import os

# Add python directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'python'))

if __name__ == "__main__":
    from cc_caller.__main__ import main
    import asyncio
    asyncio.run(main())
