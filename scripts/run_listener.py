#!/usr/bin/env python3
"""
Swap feed launcher script.

Starts the swap feed with the dev.yaml configuration. Logs are batched per
block window, valued in USD and written to the local SQLite database.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from swapfeed.runner.pipeline import main


if __name__ == "__main__":
    sys.argv = ["swapfeed", "--config", "configs/dev.yaml", "--profile", "dev"]

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nSwap feed stopped by user.")
        sys.exit(0)
    except Exception as e:
        print(f"Error running swap feed: {e}")
        sys.exit(1)
