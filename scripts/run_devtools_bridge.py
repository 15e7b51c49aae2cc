#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[mcp] browserUrl={os.environ.get('MCP_BROWSER_URL', '-')} | "
    f"wsEndpoint={'set' if os.environ.get('MCP_WS_ENDPOINT') else '-'} | "
    f"hosts={os.environ.get('MCP_DISCOVERY_HOSTS', 'webtop1,webtop2,webtop3')} | "
    f"launch={os.environ.get('MCP_ALLOW_LAUNCH', '1')}",
    file=sys.stderr,
)

from mcp_servers.devtools_bridge.main import main  # noqa: E402

if __name__ == "__main__":
    main()
