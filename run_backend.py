#!/usr/bin/env python3
"""Runner script to start the backend server."""
import os
import sys

script_dir = os.path.dirname(os.path.abspath(__file__))
backend_dir = os.path.join(script_dir, "backend")

# Allow running from a checkout without `pip install -e .`
sys.path.insert(0, backend_dir)

if __name__ == "__main__":
    import uvicorn

    from shelterwatch.settings import get_settings, setup_logging

    setup_logging(get_settings())
    uvicorn.run("shelterwatch.main:app", host="0.0.0.0", port=8000, reload=False, log_config=None)
