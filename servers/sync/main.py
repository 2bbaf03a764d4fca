"""Entry point for the Package Sync Server."""

import sys
from pathlib import Path

# Add src to the Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root / "src"))

from pkgsync.sync_server.server import main

if __name__ == "__main__":
    main()
