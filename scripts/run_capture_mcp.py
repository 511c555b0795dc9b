#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[mcp] chrome={os.environ.get('CHROME_PATH', 'auto')} | "
    f"output={os.environ.get('MCP_CAPTURE_OUTPUT_DIR', '~/Desktop/captures')}",
    file=sys.stderr,
)

from mcp_servers.capture.main import main  # noqa: E402

if __name__ == "__main__":
    main()
