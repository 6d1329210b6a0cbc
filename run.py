#!/usr/bin/env python3
"""
Resumable Multipart Upload Coordinator

Run the coordinator service, or upload a file through one.

Usage:
    python run.py serve                         # Use config.json / environment
    python run.py serve -c custom.json          # Use custom config
    python run.py serve --port 8080             # Override bind port
    python run.py upload big.bin                # Presigned upload to localhost:4000
    python run.py upload big.bin -m proxy       # Send parts through the service
    python run.py upload big.bin -r UPLOAD_ID   # Resume an existing session
    python run.py upload big.bin -j result.json # Write JSON result
"""

import sys
from upload_coordinator.cli import main

if __name__ == "__main__":
    sys.exit(main())
