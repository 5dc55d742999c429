#!/usr/bin/env python3
"""Runner script to start the simulator."""
import os
import subprocess
import sys

script_dir = os.path.dirname(os.path.abspath(__file__))

env = dict(os.environ)
env.setdefault("BACKEND_URL", "http://localhost:8000")
env["PYTHONPATH"] = os.pathsep.join(
    [os.path.join(script_dir, "backend"), script_dir, env.get("PYTHONPATH", "")]
)

# Run simulator
subprocess.run(
    [sys.executable, "-m", "simulator.simulate", "--speed", "5", "--minutes", "3"],
    cwd=script_dir,
    env=env,
)
