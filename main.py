#!/usr/bin/env python3
"""
Portainer Updater

Updates a running Portainer agent or server container, service, deployment
or Nomad job to a new image, and restores the original if the new one does
not come up healthy.

This script supports running directly from a source checkout that uses a
src/ layout: it adds the local `src/` directory to sys.path. For production
use, prefer installing the project and using the `portainer-updater` console
script.

Examples:
  python3 main.py agent 42 portainer/agent:2.19.0
  python3 main.py --pretty-log portainer 42 portainer/portainer-ee:2.19.0 --env-type swarm
  python3 main.py agent 42 portainer/agent:2.19.0 --env-type nomad
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
